"""Stock Aggregation Proxy."""
