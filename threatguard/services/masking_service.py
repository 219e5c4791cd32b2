"""Data Masking Service"""

from typing import Any, Dict, Iterable, List, Optional, Set
import structlog

from threatguard.utils.config import settings

logger = structlog.get_logger()


def _normalize_key(key: Any) -> str:
    return str(key).lower().replace("_", "").replace("-", "")


class MaskingService:
    """
    Redacts sensitive fields before audit data is stored

    Field names are matched case-insensitively and ignoring ``_``/``-``,
    so ``apiKey``, ``api_key`` and ``API-KEY`` are the same field. Nested
    mappings and lists are traversed. Masking is idempotent.
    """

    def __init__(
        self,
        sensitive_fields: Optional[Iterable[str]] = None,
        marker: Optional[str] = None
    ):
        fields = settings.SENSITIVE_FIELDS if sensitive_fields is None else sensitive_fields
        self.sensitive_fields: Set[str] = {_normalize_key(f) for f in fields}
        self.marker = marker or settings.REDACTION_MARKER

    def mask_sensitive_data(
        self,
        data: Dict[str, Any],
        extra_field_names: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """
        Return a copy of ``data`` with sensitive values replaced

        Args:
            data: Mapping to mask
            extra_field_names: Additional field names to treat as sensitive

        Returns:
            Masked copy; the input is not modified
        """
        fields = self.sensitive_fields
        if extra_field_names:
            fields = fields | {_normalize_key(f) for f in extra_field_names}

        masked_paths: List[str] = []
        masked = self._mask_mapping(data, fields, "", masked_paths)

        if masked_paths:
            logger.debug("data_masked", fields_count=len(masked_paths), fields=masked_paths)

        return masked

    def is_sensitive(self, field_name: str) -> bool:
        return _normalize_key(field_name) in self.sensitive_fields

    def _mask_mapping(
        self,
        data: Dict[str, Any],
        fields: Set[str],
        prefix: str,
        masked_paths: List[str]
    ) -> Dict[str, Any]:
        result = {}
        for key, value in data.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if _normalize_key(key) in fields:
                result[key] = self.marker
                masked_paths.append(path)
            else:
                result[key] = self._mask_value(value, fields, path, masked_paths)
        return result

    def _mask_value(self, value: Any, fields: Set[str], path: str, masked_paths: List[str]) -> Any:
        if isinstance(value, dict):
            return self._mask_mapping(value, fields, path, masked_paths)
        if isinstance(value, list):
            return [
                self._mask_value(item, fields, f"{path}[{i}]", masked_paths)
                for i, item in enumerate(value)
            ]
        return value
