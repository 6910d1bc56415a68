"""Tests for text-to-image naming, costs, manifests, sessions, finalize and refine."""

import json
from datetime import datetime
from pathlib import Path

import pytest

from uhd_skills.t2i import cli
from uhd_skills.t2i.cost import estimate_job_cost, estimate_total_cost, format_cost
from uhd_skills.t2i.finalize import finalize_session, unique_destination
from uhd_skills.t2i.manifest import parse_manifest, resolve_manifest_jobs
from uhd_skills.t2i.models import JobDefinition, auto_select_model, build_input, resolve_model
from uhd_skills.t2i.naming import generate_filenames, slugify_prompt
from uhd_skills.t2i.session import (
    SelectionEntry,
    SelectionSet,
    SessionError,
    SessionImage,
    SessionJob,
    SessionMeta,
    SessionStore,
    generate_session_id,
)


def _job(prompt: str, model: str, filenames: list[str], **params: object) -> SessionJob:
    return SessionJob(
        prompt=prompt,
        model=model,  # type: ignore[arg-type]
        num_images=len(filenames),
        cost=0.04 * len(filenames),
        round=1,
        params=params,
        images=[
            SessionImage(filename=name, width=8, height=8, request_id="r", url=f"https://x/{name}")
            for name in filenames
        ],
    )


def _session(
    store: SessionStore, session_id: str, jobs: list[SessionJob] | None = None,
) -> SessionMeta:
    """Create a session folder with an image file for every image in ``jobs``."""
    meta = SessionMeta(id=session_id, created_at="2025-01-01T00:00:00Z", command="generate")
    meta.jobs = jobs or []
    store.images_dir(session_id).mkdir(parents=True, exist_ok=True)
    for job in meta.jobs:
        for img in job.images:
            (store.images_dir(session_id) / img.filename).write_bytes(img.filename.encode())
    store.write_meta(meta)
    return meta


# --- naming -----------------------------------------------------------------


def test_slugify_prompt() -> None:
    """Stop words and punctuation are dropped and the slug is capped."""
    assert slugify_prompt("A white kitten sitting in a teacup, studio lighting") == (
        "white-kitten-sitting-teacup-studio-lighting"
    )
    assert slugify_prompt("the of and") == "image"
    assert len(slugify_prompt("x" * 80)) == 50
    assert slugify_prompt("one two three four five six seven eight nine").count("-") == 6


def test_generate_filenames_avoids_collisions(tmp_path: Path) -> None:
    """Existing files push new names to the next free counter."""
    (tmp_path / "cat.png").write_bytes(b"")
    (tmp_path / "dog-1.png").write_bytes(b"")

    assert generate_filenames("cat", 1, "png", tmp_path) == ["cat-1.png"]
    assert generate_filenames("dog", 2, "png", tmp_path) == ["dog-1-1.png", "dog-2.png"]


def test_generate_filenames_shares_reserved_names(tmp_path: Path) -> None:
    """Names claimed by one job are skipped by the next, before any file exists."""
    reserved: set[str] = set()

    first = generate_filenames("fox", 1, "png", tmp_path, reserved)
    second = generate_filenames("fox", 1, "png", tmp_path, reserved)

    assert first == ["fox.png"]
    assert second == ["fox-1.png"]
    assert reserved == {"fox.png", "fox-1.png"}


# --- models and cost ----------------------------------------------------------


def test_auto_select_model() -> None:
    """Quoted text and text cues pick Banana; everything else Seedream."""
    assert auto_select_model('A badge that says "AI Summit"') == "banana"
    assert auto_select_model("An infographic about coffee") == "banana"
    assert auto_select_model("A white kitten in a teacup") == "seedream"


def test_resolve_model() -> None:
    """Explicit choices are kept and unknown names rejected."""
    assert resolve_model("banana", "a cat") == "banana"
    assert resolve_model("auto", "a cat") == "seedream"
    with pytest.raises(ValueError, match="Unknown model"):
        resolve_model("dalle", "a cat")


def test_build_input_per_model() -> None:
    """Seedream takes image_size; Banana takes resolution, aspect ratio and web search."""
    seedream = build_input(JobDefinition(prompt="p", model="seedream", num_images=2, seed=7))
    banana = build_input(JobDefinition(prompt="p", model="banana", resolution="4K"))

    assert seedream == {"prompt": "p", "image_size": "auto_2K", "num_images": 2, "seed": 7}
    assert banana["resolution"] == "4K"
    assert banana["enable_web_search"] is False
    assert "image_size" not in banana


def test_estimate_job_cost() -> None:
    """Banana 4K uses the 4K rate and web search adds a surcharge per image."""
    banana = JobDefinition(
        prompt="p", model="banana", num_images=2, resolution="4K", enable_web_search=True,
    )
    seedream = JobDefinition(prompt="p", model="seedream", num_images=3)

    assert estimate_job_cost(banana) == pytest.approx(0.63)
    assert estimate_job_cost(seedream) == pytest.approx(0.12)
    assert estimate_total_cost([banana, seedream]) == pytest.approx(0.75)
    assert format_cost(0.3) == "$0.30"


def test_generation_options_web_search_only_for_banana() -> None:
    """Web search is dropped for Seedream jobs."""
    options = cli.GenerationOptions(web_search=True, num_images=2)

    assert options.job("a cat").enable_web_search is False
    assert options.job("a cat", model="banana").enable_web_search is True
    assert options.job("a cat", name="kitty").name == "kitty"


# --- manifest -----------------------------------------------------------------


def _write(path: Path, payload: object) -> Path:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ("{broken", "Invalid JSON in manifest file"),
        ({"jobs": []}, "non-empty 'jobs' array"),
        ({"defaults": {}}, "non-empty 'jobs' array"),
        ({"jobs": [{"prompt": "ok"}, {"name": "x"}]}, "Job 2: 'prompt' is required"),
    ],
)
def test_parse_manifest_errors(tmp_path: Path, payload: object, message: str) -> None:
    """Malformed manifests are rejected with a readable message."""
    with pytest.raises(ValueError, match=message):
        parse_manifest(_write(tmp_path / "m.json", payload))


def test_parse_manifest_missing_file(tmp_path: Path) -> None:
    """A missing file is a ValueError too."""
    with pytest.raises(ValueError, match="Cannot read manifest file"):
        parse_manifest(tmp_path / "absent.json")


def test_resolve_manifest_jobs_merges_defaults(tmp_path: Path) -> None:
    """Job fields override defaults and ``auto`` is resolved per prompt."""
    manifest = parse_manifest(
        _write(
            tmp_path / "m.json",
            {
                "defaults": {"numImages": 2, "model": "auto", "aspectRatio": "16:9"},
                "jobs": [
                    {"prompt": "A mountain lake at dawn"},
                    {"prompt": 'Poster with "Hello"', "numImages": 1, "name": "poster"},
                    {"prompt": "A fox", "model": "banana"},
                ],
            },
        ),
    )

    jobs = resolve_manifest_jobs(manifest)

    assert [j.model for j in jobs] == ["seedream", "banana", "banana"]
    assert [j.num_images for j in jobs] == [2, 1, 2]
    assert jobs[1].name == "poster"
    assert all(j.aspect_ratio == "16:9" for j in jobs)


# --- sessions -----------------------------------------------------------------


def test_generate_session_id() -> None:
    """Ids combine a timestamp with a prompt slug capped at 30 characters."""
    stamp = datetime(2025, 1, 2, 3, 4, 5)  # noqa: DTZ001
    assert generate_session_id("A cozy cafe at sunset", stamp) == "20250102-030405-cozy-cafe-sunset"
    long_id = generate_session_id("word " * 40, stamp)
    assert len(long_id.split("-", 2)[2]) <= 30


def test_store_create_and_unique_ids(tmp_path: Path) -> None:
    """Creating twice in the same second adds a numeric suffix."""
    store = SessionStore(tmp_path)

    first = store.create("a red fox", "generate")
    second = store.create("a red fox", "generate")

    assert first.id != second.id
    assert store.read_meta(first.id).command == "generate"
    assert store.images_dir(first.id).is_dir()


def test_store_resolve(tmp_path: Path) -> None:
    """Exact ids, unique prefixes and the newest session all resolve."""
    store = SessionStore(tmp_path)
    with pytest.raises(SessionError, match="No sessions found"):
        store.resolve()

    for sid in ("20250101-100000-cat", "20250102-090000-dog", "20250102-100000-owl"):
        _session(store, sid)

    assert store.list_ids()[0] == "20250102-100000-owl"
    assert store.resolve() == "20250102-100000-owl"
    assert store.resolve("20250101-100000-cat") == "20250101-100000-cat"
    assert store.resolve("20250101") == "20250101-100000-cat"
    with pytest.raises(SessionError, match="Ambiguous session prefix"):
        store.resolve("20250102")
    with pytest.raises(SessionError, match="Session not found"):
        store.resolve("1999")


def test_store_save_review_marks_reviewed(tmp_path: Path) -> None:
    """Saving selections writes selections.json and updates the status."""
    store = SessionStore(tmp_path)
    _session(store, "s1", [_job("a cat", "seedream", ["cat.png"])])

    saved = store.save_review("s1", [SelectionEntry(filename="cat.png", status="keep")])

    assert saved.round == 1
    assert store.read_meta("s1").status == "reviewed"
    stored = store.read_selections("s1")
    assert stored is not None
    assert stored.selections[0].status == "keep"
    raw = json.loads((store.session_dir("s1") / "selections.json").read_text(encoding="utf-8"))
    assert "timestamp" in raw


def test_store_delete(tmp_path: Path) -> None:
    """Sessions can be removed one at a time or all together."""
    store = SessionStore(tmp_path / "sessions")
    _session(store, "a")
    _session(store, "b")

    store.delete("a")
    assert store.list_ids() == ["b"]
    with pytest.raises(SessionError):
        store.delete("a")
    assert store.delete_all() == 1
    assert store.list_ids() == []


# --- finalize -----------------------------------------------------------------


def test_unique_destination(tmp_path: Path) -> None:
    """Existing names get ``-N`` before the extension."""
    (tmp_path / "cat.png").write_bytes(b"")
    (tmp_path / "cat-1.png").write_bytes(b"")

    assert unique_destination(tmp_path, "cat.png") == tmp_path / "cat-2.png"
    assert unique_destination(tmp_path, "dog.png") == tmp_path / "dog.png"


def test_finalize_copies_kept_images_only(tmp_path: Path) -> None:
    """Only ``keep`` images are copied, without overwriting, and the session is finalized."""
    store = SessionStore(tmp_path / "sessions")
    _session(store, "s1", [_job("animals", "seedream", ["cat.png", "dog.png", "owl.png"])])
    store.write_selections(
        "s1",
        SelectionSet(
            timestamp="t",
            round=1,
            selections=[
                SelectionEntry(filename="cat.png", status="keep"),
                SelectionEntry(filename="dog.png", status="reject"),
                SelectionEntry(filename="owl.png", status="regenerate", new_prompt="an owl"),
                SelectionEntry(filename="cat.png", status="keep"),
                SelectionEntry(filename="gone.png", status="keep"),
            ],
        ),
    )
    dest = tmp_path / "project"
    dest.mkdir()
    (dest / "cat.png").write_bytes(b"existing")

    copied = finalize_session(store, "s1", dest)

    assert [p.name for p in copied] == ["cat-1.png"]
    assert (dest / "cat.png").read_bytes() == b"existing"
    assert not (dest / "dog.png").exists()
    assert store.read_meta("s1").status == "finalized"


def test_finalize_without_selections_copies_all(tmp_path: Path) -> None:
    """With no review saved every generated image is copied."""
    store = SessionStore(tmp_path / "sessions")
    _session(store, "s1", [_job("a", "seedream", ["a.png"]), _job("b", "banana", ["b.png"])])

    copied = finalize_session(store, "s1", tmp_path / "out")

    assert sorted(p.name for p in copied) == ["a.png", "b.png"]


# --- refine -------------------------------------------------------------------


def test_build_refine_jobs_inherits_parameters() -> None:
    """Regenerated images reuse their job's model and parameters."""
    meta = SessionMeta(
        id="s",
        created_at="t",
        command="compare",
        jobs=[
            _job("a cat", "seedream", ["cat.png"], imageSize="square_hd"),
            _job("a poster", "banana", ["poster.png"], resolution="4K", aspectRatio="3:4", seed=5),
        ],
    )
    entries = [
        SelectionEntry(
            filename="poster.png",
            status="regenerate",
            new_prompt="a bolder poster",
            num_images=3,
        ),
        SelectionEntry(filename="unknown.png", status="regenerate"),
    ]

    jobs = cli.build_refine_jobs(meta, entries)

    assert jobs[0].model == "banana"
    assert jobs[0].prompt == "a bolder poster"
    assert jobs[0].num_images == 3
    assert (jobs[0].resolution, jobs[0].aspect_ratio, jobs[0].seed) == ("4K", "3:4", 5)
    assert jobs[1].model == "seedream"
    assert jobs[1].prompt == "a cat"
    assert jobs[1].image_size == "square_hd"
    assert jobs[1].num_images == 1
