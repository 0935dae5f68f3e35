from dataclasses import dataclass

from mpesa_ingest.logger import get_logger
from mpesa_ingest.parsing.templates import DEFAULT_CATALOG, REQUIRED_FIELDS, Template, TemplateCatalog

logger = get_logger(__name__)


@dataclass(frozen=True)
class MessageMatch:
    template: Template
    fields: dict[str, str | None]


class TemplateClassifier:
    def __init__(self, catalog: TemplateCatalog = DEFAULT_CATALOG):
        self.catalog = catalog

    def classify(self, body: str) -> MessageMatch | None:
        """Return the first template match for ``body``, or None when nothing fits."""
        if not isinstance(body, str) or not body:
            return None

        text = body.strip()
        for template in self.catalog:
            match = template.match(text)
            if not match:
                continue

            fields = self._resolve_fields(template, match)
            if fields is None:
                continue

            logger.debug("[CLASSIFY] Matched template '%s'.", template.name)
            return MessageMatch(template=template, fields=fields)

        return None

    def _resolve_fields(self, template: Template, match) -> dict[str, str | None] | None:
        fields: dict[str, str | None] = {}
        for name, rule in template.fields.items():
            try:
                value = rule.resolve(match)
            except (IndexError, KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "[CLASSIFY] Template '%s' could not resolve field '%s': %s",
                    template.name,
                    name,
                    exc,
                )
                return None
            fields[name] = value.strip() if isinstance(value, str) else value

        if any(not fields.get(name) for name in REQUIRED_FIELDS):
            logger.debug("[CLASSIFY] Template '%s' matched with empty required fields.", template.name)
            return None
        return fields
