from .requests import ConversionRequest
from .responses import ConversionResponse, HealthResponse, SnapshotResponse

__all__ = [
	'ConversionRequest',
	'ConversionResponse',
	'HealthResponse',
	'SnapshotResponse',
]
