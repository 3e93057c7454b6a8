"""
Ingest error taxonomy.

  SourceFetchError   - transient: network failure, timeout, non-2xx. Retried next tick.
  SourceConfigError  - the source cannot be fetched as configured (unsupported type,
                       item selector matches nothing). Fails that source run.
  *NotFoundError     - unknown ids passed in by a caller.

Per-item parse failures are not exceptions at this level: they become
raw_notices.status = 'ERROR' plus a counter in the run summary.
"""


class IngestError(Exception):
    pass


class SourceFetchError(IngestError):
    pass


class SourceConfigError(IngestError):
    pass


class SourceNotFoundError(IngestError):
    pass


class RawNoticeNotFoundError(IngestError):
    pass
