"""Event exporters."""

from swapguard.observability.exporters.stdout_exporter import (
    ConsoleExporter,
    JsonLinesExporter,
)

EXPORTERS = {
    "console": ConsoleExporter,
    "jsonl": JsonLinesExporter,
}

__all__ = ["ConsoleExporter", "JsonLinesExporter", "EXPORTERS"]
