from prometheus_client import Counter, Histogram

# 低基数标签：operation 为固定的方法名，status 为 ok 或异常类名，不含对象键
OPERATIONS = Counter(
    "objstore_operations_total",
    "Total storage operations",
    ["protocol", "operation", "status"],
)

LATENCY = Histogram(
    "objstore_operation_duration_seconds",
    "Storage operation latency in seconds",
    ["protocol", "operation"],
)

TRANSFERRED_BYTES = Counter(
    "objstore_transferred_bytes_total",
    "Bytes moved between local files and the storage backend",
    ["protocol", "direction"],
)
