"""Output directory management and on-disk project artifacts."""

import base64
import json
import os
import re

from narration_producer.constants import OUTPUT_DIR
from narration_producer.models import MixedAudioOutput

PROJECT_FILE = "project.json"

# MIME type → output file extension
OUTPUT_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


def slug_from_path(project_path: str) -> str:
    """Convert a project filename to its output directory slug.

    "My Story.json" → "my_story"
    """
    basename = os.path.splitext(os.path.basename(project_path))[0]
    return re.sub(r"[^a-zA-Z0-9]+", "_", basename).strip("_").lower()


def init_output_dir(slug: str, output_base: str = OUTPUT_DIR) -> str:
    """Create output/<slug>/final/ and return the project directory."""
    project_dir = os.path.join(output_base, slug)
    os.makedirs(os.path.join(project_dir, "final"), exist_ok=True)
    return project_dir


def write_artifact(project_dir: str, filename: str, data: dict) -> str:
    """Write JSON artifact to project_dir/filename. Returns the path."""
    path = os.path.join(project_dir, filename)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    return path


def load_artifact(project_dir: str, filename: str) -> dict | None:
    """Read JSON artifact. Returns None if file doesn't exist."""
    path = os.path.join(project_dir, filename)
    if not os.path.exists(path):
        return None
    with open(path) as f:
        return json.load(f)


def write_mixed_output(project_dir: str, output: MixedAudioOutput, name: str = "mix") -> str:
    """Decode the mixed track into final/<name>.<ext>. Returns the path."""
    ext = OUTPUT_EXTENSIONS.get(output.mime_type, "wav")
    final_dir = os.path.join(project_dir, "final")
    os.makedirs(final_dir, exist_ok=True)
    path = os.path.join(final_dir, f"{name}.{ext}")
    with open(path, "wb") as f:
        f.write(base64.b64decode(output.audio_data))
    return path


def list_projects(output_base: str = OUTPUT_DIR) -> list[str]:
    """Sorted slugs of directories under output_base holding a project.json."""
    if not os.path.exists(output_base):
        return []
    return sorted(
        name for name in os.listdir(output_base)
        if os.path.exists(os.path.join(output_base, name, PROJECT_FILE))
    )
