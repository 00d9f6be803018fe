"""Cross-cutting helpers shared by the worker."""

SERVICE_NAME = "queue_worker"
