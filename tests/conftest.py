"""Shared test fixtures."""

import json
from pathlib import Path

import pytest

from storyweaver.core.models import CharacterAlignment
from storyweaver.story.loader import load_story

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR


@pytest.fixture
def story_path(fixtures_dir: Path) -> Path:
    return fixtures_dir / "story.json"


@pytest.fixture
def story(story_path: Path):
    return load_story(story_path)


@pytest.fixture
def hello_response(fixtures_dir: Path) -> dict:
    return json.loads((fixtures_dir / "hello_alignment.json").read_text())


@pytest.fixture
def hello_alignment() -> CharacterAlignment:
    return CharacterAlignment(
        characters=["H", "i", " ", "B", "o", "b", "."],
        char_start=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6],
        char_end=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7],
    )
