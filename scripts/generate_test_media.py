#!/usr/bin/env python3
"""
Generate Test Sources for the HLS Pipeline

Creates short source clips that exercise the full rendition ladder, for
manual `hls submit` runs and for seeding a published-assets tree.
Uses ffmpeg to generate:
- A 16:9 test-pattern clip with a sine tone (H.264/AAC MP4)
- A 4:3 variant (checks aspect-preserving scaling)
- A video-only clip (no audio stream)

Usage:
    python scripts/generate_test_media.py /path/to/sources

    # Or with environment variable
    export HLS_TEST_SOURCES=/path/to/sources
    python scripts/generate_test_media.py

Requirements:
    - ffmpeg (with libx264 and aac) must be installed and in PATH
"""

import argparse
import os
import subprocess
import sys
from pathlib import Path


def check_ffmpeg():
    """Verify ffmpeg is installed and accessible."""
    try:
        result = subprocess.run(
            ["ffmpeg", "-version"],
            capture_output=True,
            text=True,
            check=True
        )
        print("✅ ffmpeg found:", result.stdout.split('\n')[0])
        return True
    except (subprocess.CalledProcessError, FileNotFoundError):
        print("❌ ffmpeg not found. Please install ffmpeg first.")
        return False


def create_source_clip(
    output_path: Path,
    duration: int = 10,
    width: int = 1280,
    height: int = 720,
    fps: int = 24,
    audio: bool = True,
):
    """Create a test-pattern source clip using ffmpeg.

    Args:
        output_path: Path to output MP4 file
        duration: Clip duration in seconds
        width: Video width in pixels
        height: Video height in pixels
        fps: Frames per second
        audio: Mux a 440 Hz sine tone as an AAC track
    """
    if output_path.exists():
        print(f"  Skipping {output_path.name} (already exists)")
        return
    print(f"  Creating {output_path.name} ({duration}s, {width}x{height}"
          f"{', with audio' if audio else ', video only'})...")

    cmd = [
        "ffmpeg",
        "-f", "lavfi",
        "-i", f"testsrc=duration={duration}:size={width}x{height}:rate={fps}",
    ]
    if audio:
        cmd += [
            "-f", "lavfi",
            "-i", f"sine=frequency=440:duration={duration}:sample_rate=48000",
            "-c:a", "aac",
            "-b:a", "128k",
        ]
    cmd += [
        "-pix_fmt", "yuv420p",
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-shortest",
        "-y",  # Overwrite if exists
        str(output_path)
    ]

    subprocess.run(cmd, capture_output=True, check=True)
    print(f"    ✅ Created {output_path.name} ({output_path.stat().st_size} bytes)")


def generate_test_sources(base_path: Path):
    """Generate all test source clips.

    Args:
        base_path: Directory for the generated clips
    """
    print(f"\n🎬 Generating test sources in: {base_path}\n")
    base_path.mkdir(parents=True, exist_ok=True)

    print("🎥 Generating source clips...")
    create_source_clip(base_path / "widescreen.mp4", duration=10)
    create_source_clip(base_path / "fourbythree.mp4", duration=6, width=960, height=720)
    create_source_clip(base_path / "silent.mp4", duration=6, audio=False)
    print()

    print("✅ All test sources generated successfully!\n")

    print("📊 Summary:")
    print(f"   Clips: {len(list(base_path.glob('*.mp4')))} files")
    print()

    print("🚀 Publish one with:")
    print(f"   hls -v submit {base_path / 'widescreen.mp4'}")
    print()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Generate source clips for HLS pipeline test runs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Generate in specific directory
    python scripts/generate_test_media.py /tmp/hls_sources

    # Use environment variable
    export HLS_TEST_SOURCES=/tmp/hls_sources
    python scripts/generate_test_media.py
        """
    )

    parser.add_argument(
        "output_dir",
        nargs="?",
        help="Output directory for test sources (default: $HLS_TEST_SOURCES)"
    )

    parser.add_argument(
        "--out",
        dest="output_dir_flag",
        help="Output directory for test sources (alternative to positional arg)",
    )

    args = parser.parse_args()

    # Priority: positional arg, then --out, then $HLS_TEST_SOURCES
    if args.output_dir:
        output_dir = Path(args.output_dir)
    elif args.output_dir_flag:
        output_dir = Path(args.output_dir_flag)
    elif "HLS_TEST_SOURCES" in os.environ:
        output_dir = Path(os.environ["HLS_TEST_SOURCES"])
    else:
        print("❌ Error: No output directory specified")
        print()
        print("Please provide output directory:")
        print("  python scripts/generate_test_media.py /path/to/sources")
        print("  python scripts/generate_test_media.py --out /path/to/sources")
        print()
        print("Or set HLS_TEST_SOURCES environment variable:")
        print("  export HLS_TEST_SOURCES=/path/to/sources")
        print("  python scripts/generate_test_media.py")
        sys.exit(1)

    if not check_ffmpeg():
        sys.exit(1)

    try:
        generate_test_sources(output_dir)
    except subprocess.CalledProcessError as e:
        print(f"\n❌ Error generating test sources: {e}")
        if e.stderr:
            print(f"   ffmpeg error: {e.stderr.decode()}")
        sys.exit(1)


if __name__ == "__main__":
    main()
