from pathlib import Path
import textwrap

import pytest

from armada.classes import ClassLoadError, ClassLoader, build_overlay

REPO_CLASSES = Path(__file__).resolve().parents[1] / "classes"


def write_class(path: Path, *, title: str) -> None:
    path.write_text(
        textwrap.dedent(
            """
            id: sample
            title: {title}
            instructions: Keep changes small.
            skills:
              - name: review
                description: Re-read the diff before finishing.
                content: Check naming and tests.
            """
        ).strip().format(title=title),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_class(base / "sample.yaml", title="Base Title")
    write_class(override / "sample.yaml", title="Override Title")

    loader = ClassLoader([base, override])
    classes = loader.load_all()

    assert classes["sample"].title == "Override Title"


def test_loader_handles_missing_classes(tmp_path: Path) -> None:
    assert ClassLoader([tmp_path]).load_all() == {}
    assert ClassLoader([tmp_path / "absent"]).load_all() == {}


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    invalid = tmp_path / "invalid"
    invalid.mkdir()
    (invalid / "broken.yaml").write_text("id: \ntitle: test", encoding="utf-8")

    with pytest.raises(ClassLoadError):
        ClassLoader([invalid]).load_all()


def test_get_unknown_class_raises(tmp_path: Path) -> None:
    write_class(tmp_path / "sample.yaml", title="Sample")
    loader = ClassLoader([tmp_path])

    assert loader.get("sample").skills[0].name == "review"
    with pytest.raises(ClassLoadError, match="not found"):
        loader.get("missing")


def test_bundled_classes_load() -> None:
    classes = ClassLoader([REPO_CLASSES]).load_all()
    assert {"scout", "builder"} <= set(classes)


def test_build_overlay_sections(tmp_path: Path) -> None:
    write_class(tmp_path / "sample.yaml", title="Sample")
    agent_class = ClassLoader([tmp_path]).get("sample")

    overlay = build_overlay(
        agent_class,
        agent_id="a1",
        agent_name="Scout 1",
        custom_instructions="Only touch the docs folder.",
    )

    assert overlay.name == "sample"
    text = overlay.instructions
    assert text.startswith('# Agent Identity\nYou are agent "Scout 1" (id: a1), class "Sample".')
    assert "Keep changes small." in text
    assert "# Skills\n\n## review\nRe-read the diff before finishing.\n\nCheck naming and tests." in text
    assert text.endswith("# Custom Instructions\nOnly touch the docs folder.")


def test_build_overlay_without_class() -> None:
    overlay = build_overlay(None, agent_id="a2", agent_name="Plain")

    assert overlay.name == "default"
    assert overlay.instructions == '# Agent Identity\nYou are agent "Plain" (id: a2).'
