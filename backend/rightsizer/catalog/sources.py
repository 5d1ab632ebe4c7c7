"""
Upstream row sources for the catalog refresh pipeline.

Every source yields rows as column-name to string mappings. AWS bulk
pricing CSVs carry a few metadata lines before the header row; they are
skipped with skip_lines.
"""
import csv
import itertools
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Protocol

import httpx
import structlog

from rightsizer.exceptions import UpstreamDataFaultError

logger = structlog.get_logger()

Row = Mapping[str, str]


class RowSource(Protocol):
    name: str

    def rows(self) -> Iterator[Row]:
        ...


def _csv_rows(lines: Iterable[str], skip_lines: int) -> Iterator[Row]:
    reader = csv.DictReader(itertools.islice(lines, skip_lines, None))
    for row in reader:
        # Short rows leave trailing columns as None
        yield {k: (v if v is not None else "") for k, v in row.items() if k is not None}


class IterableRowSource:
    """Rows already in memory."""

    def __init__(self, rows: Iterable[Row], name: str = "memory"):
        self._rows = list(rows)
        self.name = name

    def rows(self) -> Iterator[Row]:
        return iter(self._rows)


class CsvFileRowSource:
    """A pricing CSV on local disk."""

    def __init__(self, path, skip_lines: int = 0):
        self.path = Path(path)
        self.skip_lines = skip_lines
        self.name = str(self.path)

    def rows(self) -> Iterator[Row]:
        try:
            with self.path.open(newline="", encoding="utf-8") as f:
                yield from _csv_rows(f, self.skip_lines)
        except OSError as e:
            raise UpstreamDataFaultError(self.name, str(e)) from e


class HttpCsvRowSource:
    """
    A pricing CSV streamed over HTTP.

    The body is never held in memory as a whole; rows are parsed as lines
    arrive.
    """

    def __init__(self, url: str, client: httpx.Client, skip_lines: int = 0):
        self.url = url
        self.client = client
        self.skip_lines = skip_lines
        self.name = url
        self.logger = logger.bind(component="http_csv_source", url=url)

    def rows(self) -> Iterator[Row]:
        self.logger.info("download_started")
        count = 0
        try:
            with self.client.stream("GET", self.url) as response:
                response.raise_for_status()
                for row in _csv_rows(response.iter_lines(), self.skip_lines):
                    count += 1
                    yield row
        except httpx.HTTPError as e:
            self.logger.error("download_failed", error=str(e), rows_read=count)
            raise UpstreamDataFaultError(self.url, str(e)) from e
        self.logger.info("download_completed", rows_read=count)
