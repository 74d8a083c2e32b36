"""
Command line entry point: ``pahedl https://pahe.win/<id>``
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from tqdm import tqdm

from .downloader import PaheWinDownloader
from .storage import StorageManager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pahedl",
        description="Download the file behind a pahe.win link",
    )
    parser.add_argument("url", help="pahe.win landing page, e.g. https://pahe.win/QnSgV")
    parser.add_argument("-o", "--output-dir", help="Existing directory to save into (default: DOWNLOADS_DIR or .)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    return parser


async def run(url: str, output_dir: Optional[str] = None, show_progress: bool = True) -> int:
    dl = PaheWinDownloader(storage=StorageManager(output_dir) if output_dir else None)

    bar: Optional[tqdm] = None

    def on_progress(written: int, total: Optional[int]) -> None:
        nonlocal bar
        if bar is None:
            bar = tqdm(total=total, unit="B", unit_scale=True, unit_divisor=1024)
        bar.update(written - bar.n)

    try:
        result, error = await dl.download(url, on_progress=on_progress if show_progress else None)
    finally:
        if bar is not None:
            bar.close()

    if error:
        print(f"Download failed at {error.stage} ({error.code.value}): {error.message}", file=sys.stderr)
        return 1

    print(f"{result.file_path} ({result.bytes_written} bytes, {result.target.mime_type})")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return asyncio.run(run(args.url, args.output_dir, show_progress=not args.no_progress))


if __name__ == "__main__":
    sys.exit(main())
