"""Command-line gallery browser."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from auth import AppleCredential, AuthService
from diagnostics import check_server_reachability
from gallery import GalleryController, GalleryError, RemoteImageCache, SessionStore
from gallery.config import GalleryConfig, load_gallery_config
from observability import render_metrics, setup_logging
from supabase_client import SupabaseClient


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Browse the photo gallery stored in Supabase, one image at a time."
    )
    parser.add_argument(
        "--apple-id",
        help="Sign in with this Apple user identifier before loading the gallery.",
    )
    parser.add_argument("--email", help="Email reported by Sign in with Apple.")
    parser.add_argument("--given-name", help="Given name reported by Sign in with Apple.")
    parser.add_argument("--family-name", help="Family name reported by Sign in with Apple.")
    parser.add_argument(
        "--sign-out",
        action="store_true",
        help="Forget the stored session and exit.",
    )
    parser.add_argument(
        "--index",
        type=int,
        default=0,
        help="Position to select; pages are fetched until it is loaded or the gallery ends.",
    )
    parser.add_argument(
        "--save",
        type=Path,
        help="Download the selected image and write it to this path.",
    )
    parser.add_argument(
        "--diagnose",
        action="store_true",
        help="Check DNS resolution and HTTP reachability of the backend and exit.",
    )
    parser.add_argument(
        "--metrics",
        action="store_true",
        help="Print Prometheus metrics before exiting.",
    )
    return parser.parse_args(list(argv) if argv is not None else None)


async def _browse(
    args: argparse.Namespace,
    config: GalleryConfig,
    client: SupabaseClient,
) -> int:
    gallery = GalleryController(
        client,
        page_size=config.page_size,
        retry_policy=config.retry_policy,
        tz=config.timezone,
    )
    auth = AuthService(client, SessionStore(config.session_path), gallery=gallery)
    cache = RemoteImageCache(
        max_entries=config.image_cache_max_entries,
        max_side=config.image_max_side,
    )
    try:
        if args.sign_out:
            auth.sign_out()
            print("Signed out")
            return 0
        if args.apple_id:
            credential = AppleCredential(
                user=args.apple_id,
                email=args.email,
                given_name=args.given_name,
                family_name=args.family_name,
            )
            try:
                user = await auth.sign_in(credential)
            except GalleryError as exc:
                print(f"Sign in failed: {exc}", file=sys.stderr)
                return 1
        else:
            user = auth.restore()
        if user is None:
            print("User not logged in", file=sys.stderr)
            return 1
        print(f"Signed in as {user.name or user.email or user.apple_id}")

        snapshot = await gallery.reload()
        while True:
            if snapshot.error is not None:
                print(snapshot.error_message, file=sys.stderr)
                return 1
            if not snapshot.records:
                print("No images yet")
                return 0
            index = gallery.select(args.index)
            await gallery.wait_idle()
            snapshot = gallery.snapshot
            if index >= args.index or snapshot.exhausted or snapshot.error is not None:
                break

        index = snapshot.selected_index
        record = snapshot.records[index]
        print(f"{gallery.title_for(index)}  ({snapshot.position_label})")
        print(f"Showing image {record.id}: {record.normalized_url}")
        if args.save:
            try:
                image = await cache.resolve(record.image_url)
            except GalleryError as exc:
                print(f"Image download failed: {exc}", file=sys.stderr)
                return 1
            args.save.parent.mkdir(parents=True, exist_ok=True)
            image.save(args.save)
            print(f"Saved {args.save}")
        return 0
    finally:
        await gallery.aclose()
        await cache.aclose()


async def _run(args: argparse.Namespace) -> int:
    config = load_gallery_config()
    client = SupabaseClient()
    try:
        if args.diagnose:
            report = await check_server_reachability(client)
            for line in report.lines():
                print(line)
            logging.info("DIAG report %s", json.dumps(report.as_dict()))
            return 0 if report.reachable else 1
        if not client.enabled:
            print("SUPABASE_URL and SUPABASE_KEY must be set", file=sys.stderr)
            return 2
        return await _browse(args, config, client)
    finally:
        await client.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging()
    code = asyncio.run(_run(args))
    if args.metrics:
        payload, _ = render_metrics()
        sys.stdout.write(payload.decode("utf-8"))
    return code


if __name__ == "__main__":
    raise SystemExit(main())
