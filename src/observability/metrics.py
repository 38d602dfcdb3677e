"""
Prometheus metrics for the pgvector provider.

Covers:
- Provider operation counts by outcome, and their latency
- Absorbed (recoverable) failures
- Filter conditions dropped during compilation
- Indexing throughput

Collectors register on the default prometheus_client registry unless
one is passed in; the host application exposes that registry however it
already serves Prometheus.
"""

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the pgvector provider.

    Usage:
        metrics = MetricsCollector()

        metrics.record_operation("vector_search", "success", 0.012)
        metrics.record_warning("delete_from_collection")
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize Prometheus metrics."""
        registry = registry or REGISTRY

        self.operations = Counter(
            "vdb_operations_total",
            "Total vector database operations",
            ["operation", "status"],  # status: success, warning, error
            registry=registry,
        )

        self.operation_latency = Histogram(
            "vdb_operation_latency_seconds",
            "Time spent in a vector database operation",
            ["operation"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        self.recoverable_warnings = Counter(
            "vdb_recoverable_warnings_total",
            "Failures absorbed as warnings instead of raised",
            ["operation", "benign"],
            registry=registry,
        )

        self.filter_conditions_skipped = Counter(
            "vdb_filter_conditions_skipped_total",
            "Filter conditions dropped while compiling a condition tree",
            registry=registry,
        )

        self.items_indexed = Counter(
            "vdb_items_indexed_total",
            "Source documents processed by the indexer",
            ["status"],  # status: success, error
            registry=registry,
        )

        self.chunks_inserted = Counter(
            "vdb_chunks_inserted_total",
            "Embedding chunks inserted into collections",
            registry=registry,
        )

    def record_operation(self, operation: str, status: str, latency: float) -> None:
        """
        Record one provider operation.

        Args:
            operation: Operation name (create_collection, vector_search, ...)
            status: success, warning or error
            latency: Duration in seconds
        """
        self.operations.labels(operation=operation, status=status).inc()
        if latency > 0:
            self.operation_latency.labels(operation=operation).observe(latency)

    def record_warning(self, operation: str, benign: bool = False) -> None:
        self.recoverable_warnings.labels(
            operation=operation, benign=str(benign).lower()
        ).inc()

    def record_filter_skips(self, count: int) -> None:
        if count > 0:
            self.filter_conditions_skipped.inc(count)

    def record_indexing(self, succeeded: int, failed: int, chunks: int) -> None:
        """
        Record the outcome of an indexing batch.

        Args:
            succeeded: Source documents fully indexed
            failed: Source documents omitted from the result
            chunks: Chunk rows inserted
        """
        if succeeded:
            self.items_indexed.labels(status="success").inc(succeeded)
        if failed:
            self.items_indexed.labels(status="error").inc(failed)
        if chunks:
            self.chunks_inserted.inc(chunks)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
