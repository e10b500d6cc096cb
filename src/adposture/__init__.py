"""Identity infrastructure security assessment: detectors, reports and risk scoring."""

__version__ = "0.1.0"
