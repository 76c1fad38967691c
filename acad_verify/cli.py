"""
Command line entry point: ``acad-verify``.
"""

import argparse
import json
import logging
import mimetypes
import sys
from pathlib import Path

from .config import Settings
from .diagnostics import run_checks
from .errors import NotFound
from .history import VerificationHistoryRecorder
from .issuance import build_payload, payload_text, render_payload_qr
from .log import configure_logging
from .models import Outcome
from .pipeline import VerificationPipeline
from .records import HttpRecordClient, InMemoryRecordStore

logger = logging.getLogger(__name__)

EXIT_CODES = {
    Outcome.AUTHENTIC: 0,
    Outcome.TAMPERED: 1,
    Outcome.INVALID: 2,
}
EXIT_MANUAL_ENTRY = 3


def _record_client(args, settings):
    if args.records:
        return InMemoryRecordStore.from_json_file(args.records)
    api_url = args.api_url or settings.record_api_url
    if not api_url:
        raise SystemExit("error: pass --records FILE or --api-url URL (or set RECORD_API_URL)")
    return HttpRecordClient(api_url, timeout=settings.record_fetch_timeout)


def cmd_verify(args, settings):
    history = VerificationHistoryRecorder(settings.database_url) if args.caller else None
    with VerificationPipeline(_record_client(args, settings), history=history,
                              fetch_timeout=settings.record_fetch_timeout) as pipeline:
        if args.id:
            verdict = pipeline.verify_identifier(args.id, caller_id=args.caller)
            print(verdict.to_json())
            return EXIT_CODES[verdict.outcome]

        path = Path(args.path)
        mime_type = args.mime_type or mimetypes.guess_type(path.name)[0] or 'application/octet-stream'
        result = pipeline.verify_document(path.read_bytes(), mime_type, filename=path.name,
                                          caller_id=args.caller)

    if result.manual_entry_required:
        print("No digital ID found in document. Please re-run with --id.", file=sys.stderr)
        return EXIT_MANUAL_ENTRY
    logger.info(f"Identifier recovered from {result.extraction.source}")
    print(result.verdict.to_json())
    return EXIT_CODES[result.verdict.outcome]


def cmd_history(args, settings):
    history = VerificationHistoryRecorder(settings.database_url)
    entries = history.entries(args.caller, limit=args.limit)
    print(json.dumps([entry.to_dict() for entry in entries], indent=2))
    return 0


def cmd_issue_qr(args, settings):
    store = InMemoryRecordStore.from_json_file(args.records)
    try:
        record = store.fetch(args.id)
    except NotFound as e:
        print(f"error: {e} ({args.id})", file=sys.stderr)
        return EXIT_CODES[Outcome.INVALID]
    Path(args.output).write_bytes(render_payload_qr(record))
    print(payload_text(build_payload(record)))
    return 0


def cmd_doctor(args, settings):
    checks = run_checks()
    for name, result in checks.items():
        mark = 'OK ' if result['ok'] else 'FAIL'
        print(f"[{mark}] {name:<15} {result['detail']}")
    return 0 if all(result['ok'] for result in checks.values()) else 1


def cmd_serve(args, settings):
    from .app import create_app

    app = create_app(settings)
    app.run(host=args.host, port=args.port, debug=False, threaded=True)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog='acad-verify', description="Certificate authenticity verification")
    parser.add_argument('--log-level', default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    subparsers = parser.add_subparsers(dest='command', required=True)

    verify = subparsers.add_parser('verify', help="Verify a certificate document or ID")
    target = verify.add_mutually_exclusive_group(required=True)
    target.add_argument('path', nargs='?', help="Certificate image or PDF")
    target.add_argument('--id', help="Certificate ID to verify directly")
    verify.add_argument('--mime-type', help="Override the detected MIME type")
    verify.add_argument('--records', help="JSON file of canonical records (local store)")
    verify.add_argument('--api-url', help="Record service base URL")
    verify.add_argument('--caller', help="Record the verdict in this caller's history")
    verify.set_defaults(func=cmd_verify)

    history = subparsers.add_parser('history', help="Show a caller's verification history")
    history.add_argument('--caller', required=True)
    history.add_argument('--limit', type=int, default=50)
    history.set_defaults(func=cmd_history)

    issue = subparsers.add_parser('issue-qr', help="Render the embedded QR code for a record")
    issue.add_argument('--records', required=True, help="JSON file of canonical records")
    issue.add_argument('--id', required=True)
    issue.add_argument('-o', '--output', required=True, help="Output PNG path")
    issue.set_defaults(func=cmd_issue_qr)

    doctor = subparsers.add_parser('doctor', help="Check native dependencies")
    doctor.set_defaults(func=cmd_doctor)

    serve = subparsers.add_parser('serve', help="Run the verification API")
    serve.add_argument('--host', default='0.0.0.0')
    serve.add_argument('--port', type=int, default=5000)
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(args.log_level or settings.log_level)
    return args.func(args, settings)


if __name__ == '__main__':
    sys.exit(main())
