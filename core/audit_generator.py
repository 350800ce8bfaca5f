import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Any, Iterable, Optional
from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

from core.results import ExecutionReport, TransferReport, ObjectFailure, StatementStatus
from core.schema_ir import SchemaModel
from extensions.plugins.postgresql_adapter import sanitize_error

logger = logging.getLogger(__name__)


# Parameter names whose values are masked in query strings and DSNs
SECRET_KEYS = frozenset({'password', 'passwd', 'pwd', 'secret', 'token', 'api_key',
                         'apikey', 'auth', 'credential', 'credentials', 'key'})

_DSN_SECRET = re.compile(
    r'\b(' + '|'.join(sorted(SECRET_KEYS, key=len, reverse=True)) + r')(\s*=\s*)(\S+)',
    re.IGNORECASE)


def mask_connection_string(value: Optional[str]) -> str:
    """Connection URL or libpq DSN with user info and secret parameters masked"""
    if not value:
        return "N/A"
    try:
        parsed = urlparse(value)
    except ValueError:
        return "[redacted]"

    if not (parsed.scheme and parsed.netloc):
        # key=value DSN, possibly carrying an embedded URI
        return sanitize_error(_DSN_SECRET.sub(r'\1\2***', value))

    host = parsed.netloc.rpartition('@')[2]
    netloc = f"***:***@{host}" if '@' in parsed.netloc else host
    query = [
        (key, '***' if key.lower() in SECRET_KEYS else item)
        for key, item in parse_qsl(parsed.query, keep_blank_values=True)
    ]
    return urlunparse(parsed._replace(netloc=netloc, query=urlencode(query)))


class MigrationReport:
    """Collects the outcome of a migration run and writes it as JSON."""

    def __init__(self, report_dir: Path, source_url: str, target_url: str, schema: str = 'public'):
        self.report_dir = Path(report_dir)
        self.source_url = mask_connection_string(source_url)
        self.target_url = mask_connection_string(target_url)
        self.schema = schema
        self.start_time = datetime.now()

        self.connections: Dict[str, Any] = {}
        self.objects: Dict[str, int] = {}
        self.failures: Dict[str, List[Dict[str, str]]] = {}
        self.ddl: Optional[ExecutionReport] = None
        self.data: Optional[TransferReport] = None
        self.warnings: List[str] = []
        self.manual_steps: List[str] = []

    def record_connections(self, info: Dict[str, Any]):
        self.connections = dict(info)

    def record_model(self, model: SchemaModel):
        self.objects = {
            'tables': len(model.tables),
            'sequences': len(model.sequences),
            'types': len(model.types),
            'views': len(model.views),
            'extensions': len(model.extensions),
            'indexes': sum(len(t.indexes) for t in model.tables),
            'foreign_keys': sum(len(t.foreign_keys) for t in model.tables),
        }
        for seq in model.placeholder_sequences:
            self.add_manual_step(f"Verify bounds and current value of sequence {seq.schema}.{seq.name}")

    def record_failures(self, stage: str, failures: Iterable[ObjectFailure]):
        failures = [f.to_dict() for f in failures]
        if failures:
            self.failures.setdefault(stage, []).extend(failures)

    def record_ddl(self, report: ExecutionReport):
        self.ddl = report
        for result in report.results:
            if result.status == StatementStatus.SKIPPED:
                self.add_manual_step(f"Create {result.statement.object_name} manually")

    def record_data(self, report: TransferReport):
        self.data = report
        if report.cyclic_tables:
            self.log_warning(f"Tables loaded without dependency order: {', '.join(report.cyclic_tables)}")
        for table in report.missing_tables:
            self.log_warning(f"Table {table} missing in target, data not migrated")

    def log_warning(self, message: str):
        self.warnings.append(message)

    def add_manual_step(self, step: str):
        if step not in self.manual_steps:
            self.manual_steps.append(step)

    def to_dict(self) -> Dict[str, Any]:
        end_time = datetime.now()
        return {
            'timestamp': self.start_time.isoformat(),
            'duration_seconds': round((end_time - self.start_time).total_seconds(), 3),
            'source': self.source_url,
            'target': self.target_url,
            'schema': self.schema,
            'connections': self.connections,
            'objects': self.objects,
            'failures': self.failures,
            'ddl': self.ddl.to_dict() if self.ddl else None,
            'data': self.data.to_dict() if self.data else None,
            'warnings': self.warnings,
            'manual_steps': self.manual_steps,
        }

    def write(self) -> Path:
        """Write ``migration-report-<timestamp>.json`` into the report directory"""
        self.report_dir.mkdir(parents=True, exist_ok=True)
        stamp = self.start_time.strftime('%Y%m%d-%H%M%S')
        report_path = self.report_dir / f"migration-report-{stamp}.json"

        with open(report_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

        logger.info(f"Migration report written to {report_path}")
        return report_path
