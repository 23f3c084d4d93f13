"""PostgreSQL canonical store: connection pool, merge, tracker, sync log, rollup queries."""
