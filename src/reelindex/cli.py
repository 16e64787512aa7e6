from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, List, Optional

from .doctor import run_doctor
from .errors import EmbeddingError
from .logging_config import setup_logging
from .profile import load_profile
from .service import HostNotAllowedError, Runtime, build_runtime

log = logging.getLogger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _runtime(args: argparse.Namespace) -> Runtime:
    return build_runtime(load_profile(args.profile))


def _fail(message: str) -> None:
    print(message, file=sys.stderr)
    raise SystemExit(1)


def cmd_worker(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    worker = rt.make_worker(args.worker_id)

    if args.once:
        job = worker.work_once()
        if job is None:
            print("No eligible job.")
            return
        _print_json(rt.service.job_status(job.id))
        return

    def _shutdown(signum: int, _frame: Any) -> None:
        log.info("Signal %d received, stopping worker %s", signum, worker.worker_id)
        worker.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    worker.run_forever()


def cmd_ingest(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    urls: List[str] = list(args.urls)
    if args.file:
        urls.extend(line.strip() for line in args.file.read_text(encoding="utf-8").splitlines() if line.strip())
    if not urls:
        _fail("No URLs given.")

    allow_inference = not args.no_inference
    if len(urls) == 1:
        try:
            res = rt.service.ingest(urls[0], allow_inference=allow_inference, refresh=args.refresh)
        except HostNotAllowedError as e:
            _fail(f"{e} (allowed: {', '.join(e.allowed)})")
        except ValueError as e:
            _fail(str(e))
        _print_json(res)
        return
    _print_json(rt.service.ingest_batch(urls, allow_inference=allow_inference, refresh=args.refresh))


def cmd_job(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    if args.job_id:
        try:
            _print_json(rt.service.job_status(args.job_id))
        except KeyError:
            _fail(f"Job not found: {args.job_id}")
        return
    try:
        jobs = rt.service.list_jobs(status=args.status, limit=args.limit)
    except ValueError as e:
        _fail(str(e))
    for job in jobs:
        err = f"  error={job['error'][:60]!r}" if job["error"] else ""
        print(
            f"{job['id']}  {job['status']:<7}  attempts={job['attempts']}/{job['max_attempts']}  "
            f"{job['url']}{err}"
        )


def cmd_item(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    try:
        payload = rt.service.get_analysis(args.item_id) if args.analysis else rt.service.get_item(args.item_id)
    except KeyError:
        _fail(f"Not found: {args.item_id}")
    _print_json(payload)


def cmd_rebuild(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    try:
        _print_json(rt.service.rebuild_item(args.item_id))
    except KeyError:
        _fail(f"Item not found: {args.item_id}")


def cmd_search(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    is_recipe = None
    if args.recipes:
        is_recipe = True
    elif args.no_recipes:
        is_recipe = False
    try:
        res = rt.service.search(args.q, k=args.k, is_recipe=is_recipe, platform=args.platform, topic=args.topic)
    except (ValueError, EmbeddingError) as e:
        _fail(f"Search failed: {e}")
    if args.json:
        _print_json(res)
        return
    for hit in res["results"]:
        print(f"{hit['distance']:.4f}  {hit['id']}  {hit['title'] or ''}")
        print(f"        {hit['snippet'][:120]}")


def cmd_stats(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    payload = rt.service.stats()
    if args.facets:
        payload["topics"] = rt.service.topics(limit=args.limit)
        payload["platforms"] = rt.service.platforms()
    _print_json(payload)


def cmd_reconcile_embeddings(args: argparse.Namespace) -> None:
    rt = _runtime(args)
    res = rt.service.reconcile_embeddings(dry_run=args.dry_run)
    _print_json(res)
    verb = "would be re-enqueued" if args.dry_run else "re-enqueued"
    print(f"{len(res)} item(s) {verb}.", file=sys.stderr)


def cmd_doctor(args: argparse.Namespace) -> None:
    rep = run_doctor(load_profile(args.profile))
    print("reelindex doctor\n")
    for name, data in rep.checks.items():
        print(f"- {name}:")
        for k, v in data.items():
            print(f"    {k}: {v}")
    print("\nOK" if rep.ok else "\nNOT OK (fix missing requirements above)")


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="reelindex", description="Short-video ingest and search")
    parser.add_argument("--profile", type=Path, default=None, help="Path to a YAML profile")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", type=Path, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    w = sub.add_parser("worker", help="Run a queue worker.")
    w.add_argument("--worker-id", type=str, default=None)
    w.add_argument("--once", action="store_true", help="Process at most one job and exit")
    w.set_defaults(func=cmd_worker)

    i = sub.add_parser("ingest", help="Queue one or more URLs.")
    i.add_argument("urls", nargs="*")
    i.add_argument("--file", type=Path, default=None, help="Text file with one URL per line")
    i.add_argument("--refresh", action="store_true", help="Bypass the content cache and always create a job")
    i.add_argument("--no-inference", action="store_true", help="Do not let the model fill in missing recipe values")
    i.set_defaults(func=cmd_ingest)

    j = sub.add_parser("job", help="Show a job, or list recent jobs.")
    j.add_argument("job_id", nargs="?", default=None)
    j.add_argument("--status", type=str, default=None, choices=["queued", "running", "done", "error"])
    j.add_argument("--limit", type=int, default=50)
    j.set_defaults(func=cmd_job)

    it = sub.add_parser("item", help="Show a stored item.")
    it.add_argument("item_id")
    it.add_argument("--analysis", action="store_true", help="Print only the analysis artifact")
    it.set_defaults(func=cmd_item)

    r = sub.add_parser("rebuild", help="Re-run the pipeline for an item, bypassing the cache.")
    r.add_argument("item_id")
    r.set_defaults(func=cmd_rebuild)

    s = sub.add_parser("search", help="Semantic search over ingested items.")
    s.add_argument("q")
    s.add_argument("-k", type=int, default=10)
    s.add_argument("--platform", type=str, default=None)
    s.add_argument("--topic", type=str, default=None)
    group = s.add_mutually_exclusive_group()
    group.add_argument("--recipes", action="store_true", help="Only recipes")
    group.add_argument("--no-recipes", action="store_true", help="Exclude recipes")
    s.add_argument("--json", action="store_true")
    s.set_defaults(func=cmd_search)

    st = sub.add_parser("stats", help="Item and job counts.")
    st.add_argument("--facets", action="store_true", help="Include topic and platform counts")
    st.add_argument("--limit", type=int, default=200)
    st.set_defaults(func=cmd_stats)

    rc = sub.add_parser("reconcile-embeddings", help="Re-enqueue analyzed items that have no embedding.")
    rc.add_argument("--dry-run", action="store_true")
    rc.set_defaults(func=cmd_reconcile_embeddings)

    d = sub.add_parser("doctor", help="Check local dependencies (ffmpeg, yt-dlp, optional whisper) and API keys.")
    d.set_defaults(func=cmd_doctor)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, log_file=args.log_file)
    args.func(args)


if __name__ == "__main__":
    main()
