"""Runtime: retry, resilience contracts, concurrency helpers, observability."""
