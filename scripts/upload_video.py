#!/usr/bin/env python3
"""
Upload a video to NaviStream from the command line.

Shows a single-line progress bar while the file is sent. Ctrl+C cancels the
transfer.

Usage:
    python scripts/upload_video.py clip.mp4 --title "Test" [--category music]

Environment Variables:
    NAVISTREAM_URL      API base URL (default: http://localhost:3001)
    NAVISTREAM_TOKEN    Bearer token, used when --token is not given
"""

import argparse
import json
import os
import sys
import threading

from dotenv import load_dotenv

from app.client import ProgressEvent, UploadCancelledError, UploadClientError, VideoUploadClient, render_progress_bar


DEFAULT_BASE_URL = "http://localhost:3001"
CATEGORIES = ["gaming", "music", "education", "entertainment", "sports", "other"]


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Upload a video to NaviStream")
    parser.add_argument("path", help="Video file to upload")
    parser.add_argument("--title", "-t", required=True, help="Video title")
    parser.add_argument("--description", "-d", default="", help="Video description")
    parser.add_argument("--category", "-c", default="other", choices=CATEGORIES, help="Video category")
    parser.add_argument("--base-url", default=None, help=f"API base URL (default: {DEFAULT_BASE_URL})")
    parser.add_argument("--token", default=None, help="Bearer token")
    return parser.parse_args()


def print_progress(event: ProgressEvent) -> None:
    sys.stdout.write("\r" + render_progress_bar(event))
    sys.stdout.flush()


def main() -> int:
    load_dotenv()
    args = parse_arguments()

    base_url = args.base_url or os.getenv("NAVISTREAM_URL", DEFAULT_BASE_URL)
    token = args.token or os.getenv("NAVISTREAM_TOKEN")
    if not token:
        print("A bearer token is required (--token or NAVISTREAM_TOKEN).", file=sys.stderr)
        return 2

    cancel_event = threading.Event()
    with VideoUploadClient(base_url, token) as client:
        try:
            result = client.upload(
                args.path,
                title=args.title,
                description=args.description,
                category=args.category,
                on_progress=print_progress,
                cancel_event=cancel_event,
            )
        except KeyboardInterrupt:
            cancel_event.set()
            print("\nUpload cancelled.", file=sys.stderr)
            return 130
        except UploadCancelledError:
            print("\nUpload cancelled.", file=sys.stderr)
            return 130
        except UploadClientError as e:
            print(f"\nUpload failed: {e.message}", file=sys.stderr)
            if e.details:
                print(json.dumps(e.details, indent=2), file=sys.stderr)
            return 1

    print("\n" + result.get("message", "Video uploaded successfully"))
    print(json.dumps(result.get("video", {}), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
