import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "level": record.levelname,
            "time": int(time.time()),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # attach extras (e.g. logger.info(..., extra={"date": ...}))
        for k, v in record.__dict__.items():
            if k.startswith("_"):
                continue
            if k in ("args", "msg", "name", "levelname", "levelno", "pathname", "filename",
                     "module", "exc_info", "exc_text", "stack_info", "lineno",
                     "funcName", "created", "msecs", "relativeCreated", "thread",
                     "threadName", "processName", "process", "taskName"):
                continue
            payload[k] = v
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None) -> None:
    fmt = os.getenv("LOG_FORMAT", "text").lower()
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")
    root = logging.getLogger()
    if fmt == "json":
        for h in list(root.handlers):
            h.setFormatter(JsonFormatter())


@dataclass
class Metrics:
    enabled: bool
    registry: Optional[CollectorRegistry]
    pushgateway: Optional[str]
    job: str
    grouping_key: Dict[str, str]
    runs: Optional[Counter] = None
    articles: Optional[Counter] = None
    images: Optional[Counter] = None
    errors: Optional[Counter] = None
    state_seconds: Optional[Histogram] = None

    @classmethod
    def init(cls) -> "Metrics":
        pushgateway = os.getenv("METRICS_PUSHGATEWAY_URL")
        job = os.getenv("METRICS_JOB_NAME", "digest_extractor")
        enabled = os.getenv("METRICS_ENABLED", "1").lower() in ("1", "true", "yes")
        grouping = {}
        extra = os.getenv("METRICS_LABELS_JSON")
        if extra:
            try:
                grouping.update(json.loads(extra))
            except ValueError:
                logging.getLogger(__name__).warning("Ignoring invalid METRICS_LABELS_JSON")
        for k, v in os.environ.items():
            if not k.startswith("METRICS_LABEL_"):
                continue
            key = k[len("METRICS_LABEL_"):].lower()
            if key and v:
                grouping[key] = v

        if not enabled:
            return cls(False, None, None, job, grouping)

        registry = CollectorRegistry()
        m = cls(True, registry, pushgateway, job, grouping)
        m.runs = Counter("digest_extraction_runs_total", "Extraction runs by outcome",
                         labelnames=("outcome",), registry=registry)
        m.articles = Counter("digest_articles_extracted_total", "Articles extracted",
                             labelnames=("section",), registry=registry)
        m.images = Counter("digest_images_extracted_total", "Images produced",
                           labelnames=("section",), registry=registry)
        m.errors = Counter("digest_extraction_errors_total", "Recovered and fatal errors",
                           labelnames=("error_type",), registry=registry)
        m.state_seconds = Histogram(
            "digest_extraction_state_seconds", "Duration of each run state", labelnames=("state",),
            buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300), registry=registry
        )
        return m

    def push(self) -> None:
        if not self.enabled or not self.pushgateway:
            return
        try:
            push_to_gateway(self.pushgateway, job=self.job, registry=self.registry, grouping_key=self.grouping_key)
        except OSError:
            logging.getLogger(__name__).debug("pushgateway failed", exc_info=True)

    def inc_run(self, outcome: str) -> None:
        if self.runs:
            self.runs.labels(outcome).inc()

    def inc_articles(self, section_id: str, count: int) -> None:
        if self.articles and count:
            self.articles.labels(section_id).inc(count)

    def inc_images(self, section_id: str, count: int) -> None:
        if self.images and count:
            self.images.labels(section_id).inc(count)

    def inc_error(self, error_type: str) -> None:
        if self.errors:
            self.errors.labels(error_type).inc()

    def observe_state(self, state: str, seconds: float) -> None:
        if self.state_seconds:
            self.state_seconds.labels(state).observe(seconds)

    # Lightweight timer context manager
    def timer(self, state: str):
        class _T:
            def __init__(self, outer: Metrics):
                self.outer = outer
                self.start = 0.0
            def __enter__(self_inner):
                self_inner.start = time.perf_counter()
                return self_inner
            def __exit__(self_inner, exc_type, exc, tb):
                dur = max(0.0, time.perf_counter() - self_inner.start)
                self.observe_state(state, dur)
        return _T(self)
