"""Demo HTTP service with health and Prometheus metrics endpoints."""
