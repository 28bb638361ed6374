"""Tests for dimension extraction helpers and per-source dimension sets."""

from __future__ import annotations

import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from reflexagent.classifiers import MetricClassifier
from reflexagent.extractors.dimensions import (
    UNKNOWN,
    DimensionExtractor,
    as_number,
    as_text,
    extract_author,
    extract_bitbucket_commit_count,
    extract_branch,
    extract_ci_duration,
    extract_code_volume,
    extract_commit_count,
    extract_file_changes,
    extract_gitlab_commit_count,
    extract_org_from_repo,
    split_path,
)
from reflexagent.ingestion import parse_payload
from reflexagent.models.events import Event

_segment = st.from_regex(r"[A-Za-z0-9_-]{1,20}", fullmatch=True)
_leaf = st.none() | st.booleans() | st.integers() | st.floats(allow_nan=True, allow_infinity=True) | st.text()


def _containers(children: st.SearchStrategy[object]) -> st.SearchStrategy[object]:
    return st.lists(children, max_size=4) | st.dictionaries(st.text(max_size=8), children, max_size=4)


_CLASSIFIED_NAMES = [
    "github.push",
    "github.ci.build",
    "github.ci.lead_time",
    "github.create",
    "github.deployment_status",
    "gitlab.push",
    "gitlab.merge_request",
    "gitlab.pipeline",
    "bitbucket.repo:push",
    "ci.build",
    "ci.deploy",
    "ci.lead_time",
    "task.completed",
]
_NUMERIC_AND_STATUS_KEYS = [
    "ref",
    "ref_type",
    "commits",
    "duration",
    "lead_time",
    "status",
    "total_commits_count",
    "object_attributes",
    "deployment_status",
    "push",
    "start_time",
    "end_time",
]


def _event(name: str = "github.push", source: str = "github", **data: object) -> Event:
    return Event(name=name, source=source, data=dict(data))


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


class TestOrgFromRepo:
    @given(org=_segment, repo=_segment)
    def test_returns_first_segment(self, org: str, repo: str) -> None:
        assert extract_org_from_repo(f"{org}/{repo}") == org

    def test_none_is_unknown(self) -> None:
        assert extract_org_from_repo(None) == UNKNOWN

    def test_empty_is_unknown(self) -> None:
        assert extract_org_from_repo("") == UNKNOWN
        assert extract_org_from_repo("   ") == UNKNOWN

    def test_non_string_is_unknown(self) -> None:
        assert extract_org_from_repo({"full_name": "a/b"}) == UNKNOWN


class TestCommitCount:
    @given(data=st.dictionaries(st.text(min_size=1).filter(lambda k: k != "commits"), st.integers()))
    def test_no_commits_field_counts_as_one(self, data: dict[str, int]) -> None:
        assert extract_commit_count(Event(name="github.push", source="github", data=data)) == 1

    def test_empty_list_counts_as_one(self) -> None:
        assert extract_commit_count(_event(commits=[])) == 1

    def test_counts_commits(self) -> None:
        assert extract_commit_count(_event(commits=[{"id": "a"}, {"id": "b"}, {"id": "c"}])) == 3

    def test_non_list_counts_as_one(self) -> None:
        assert extract_commit_count(_event(commits="oops")) == 1


class TestAuthor:
    def test_prefers_sender_login(self) -> None:
        event = _event(sender={"login": "octocat"}, pusher={"name": "Mona"})
        assert extract_author(event) == "octocat"

    def test_falls_back_to_pusher(self) -> None:
        assert extract_author(_event(pusher={"name": "Mona"})) == "Mona"

    def test_unknown_when_absent(self) -> None:
        assert extract_author(_event()) == UNKNOWN
        assert extract_author(_event(sender="not-a-mapping")) == UNKNOWN


class TestBranch:
    @given(name=_segment, kind=st.sampled_from(["heads", "tags"]))
    def test_strips_ref_prefix(self, name: str, kind: str) -> None:
        assert extract_branch(_event(ref=f"refs/{kind}/{name}")) == name

    def test_nested_branch_name(self) -> None:
        assert extract_branch(_event(ref="refs/heads/feature/login")) == "feature/login"

    def test_missing_ref(self) -> None:
        assert extract_branch(_event()) == UNKNOWN

    @given(ref=st.text().filter(lambda r: not r.startswith(("refs/heads/", "refs/tags/"))))
    def test_unparseable_ref(self, ref: str) -> None:
        assert extract_branch(_event(ref=ref)) == UNKNOWN

    def test_prefix_without_name(self) -> None:
        assert extract_branch(_event(ref="refs/heads/")) == UNKNOWN


# ---------------------------------------------------------------------------
# File-level extraction
# ---------------------------------------------------------------------------


class TestSplitPath:
    def test_nested_path(self) -> None:
        assert split_path("app/models/user.rb") == ("app/models", "rb")

    def test_root_file(self) -> None:
        assert split_path("README.md") == ("root", "md")

    def test_no_extension(self) -> None:
        assert split_path("bin/setup") == ("bin", "none")

    def test_dotfile_has_no_filetype(self) -> None:
        assert split_path(".gitignore") == ("root", "none")

    def test_multiple_dots_use_last(self) -> None:
        assert split_path("assets/app.min.JS") == ("assets", "js")


class TestFileChanges:
    def test_one_entry_per_file_per_commit(self) -> None:
        event = _event(
            commits=[
                {"id": "c1", "added": ["app/models/x.rb"], "modified": ["README.md"]},
                {"id": "c2", "removed": ["lib/old.py"], "modified": ["README.md"]},
            ]
        )
        changes = extract_file_changes(event)
        assert [(c.commit_id, c.change, c.directory, c.filetype) for c in changes] == [
            ("c1", "added", "app/models", "rb"),
            ("c1", "modified", "root", "md"),
            ("c2", "modified", "root", "md"),
            ("c2", "removed", "lib", "py"),
        ]

    def test_tolerates_malformed_commits(self) -> None:
        event = _event(commits=["nope", {"added": "not-a-list"}, {"added": [None, "", "a/b.c"]}])
        changes = extract_file_changes(event)
        assert len(changes) == 1
        assert changes[0].path == "a/b.c"

    def test_code_volume_sums_stats(self) -> None:
        event = _event(
            commits=[
                {"stats": {"additions": 10, "deletions": 2}},
                {"stats": {"additions": "5", "deletions": None}},
                {},
            ]
        )
        assert extract_code_volume(event) == (15, 2)


class TestOtherSourceHelpers:
    def test_gitlab_commit_count_prefers_list(self) -> None:
        event = _event("gitlab.push", "gitlab", commits=[{}, {}], total_commits_count=9)
        assert extract_gitlab_commit_count(event) == 2

    def test_gitlab_commit_count_uses_total(self) -> None:
        assert extract_gitlab_commit_count(_event("gitlab.push", "gitlab", total_commits_count=4)) == 4

    def test_bitbucket_commit_count(self) -> None:
        event = _event(
            "bitbucket.repo:push",
            "bitbucket",
            push={"changes": [{"commits": [{}, {}]}, {"commits": [{}]}, {}]},
        )
        assert extract_bitbucket_commit_count(event) == 3

    def test_bitbucket_push_without_changes_counts_one(self) -> None:
        assert extract_bitbucket_commit_count(_event("bitbucket.repo:push", "bitbucket")) == 1
        event = _event("bitbucket.repo:push", "bitbucket", push={"changes": [{"commits": []}]})
        assert extract_bitbucket_commit_count(event) == 1

    def test_ci_duration_from_timestamps(self) -> None:
        event = _event(
            "ci.build",
            "ci",
            start_time="2026-01-01T10:00:00Z",
            end_time="2026-01-01T10:02:30Z",
        )
        assert extract_ci_duration(event) == 150.0

    def test_ci_duration_fallbacks(self) -> None:
        assert extract_ci_duration(_event("ci.build", "ci", duration=42)) == 42.0
        assert extract_ci_duration(_event("ci.build", "ci", start_time="garbage", end_time="x")) == 0.0


class TestNumericPayloadValues:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (3, 3.0),
            (2.5, 2.5),
            (float("inf"), None),
            (float("-inf"), None),
            (float("nan"), None),
            (10**400, None),
            (True, None),
            ("4", None),
            (None, None),
        ],
    )
    def test_as_number(self, value: object, expected: float | None) -> None:
        assert as_number(value) == expected

    def test_as_text_rejects_containers(self) -> None:
        assert as_text({"nested": "x"}) == UNKNOWN
        assert as_text([1]) == UNKNOWN
        assert as_text("  ") == UNKNOWN
        assert as_text(" opened ") == "opened"

    def test_infinite_commit_stats_do_not_break_classification(self) -> None:
        event = parse_payload(
            '{"ref":"refs/heads/main","commits":[{"id":"a","stats":{"additions":1e999,"deletions":3}}]}',
            "github",
        )
        assert extract_code_volume(event) == (0, 3)
        result = MetricClassifier().classify(event)
        assert result.named("github.push.code_deletions")[0].value == 3
        assert all(math.isfinite(m.value) for m in result.metrics)

    def test_code_volume_beyond_float_range_counts_zero(self) -> None:
        stats = {"additions": 1.5e308, "deletions": 0}
        event = _event(commits=[{"id": "a", "stats": stats}, {"id": "b", "stats": stats}])
        assert extract_code_volume(event) == (0, 0)

    def test_infinite_gitlab_total_falls_back_to_one(self) -> None:
        event = parse_payload('{"object_kind":"push","total_commits_count":1e999}', "gitlab")
        assert extract_gitlab_commit_count(event) == 1
        assert MetricClassifier().classify(event).named("gitlab.push.commits")[0].value == 1

    def test_infinite_ci_duration_is_zero(self) -> None:
        event = parse_payload('{"type":"build","duration":1e999}', "ci")
        assert extract_ci_duration(event) == 0.0
        assert not MetricClassifier().classify(event).named("ci.build.duration")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class TestDimensionExtractor:
    def test_github_push_dimensions(self) -> None:
        event = _event(
            repository={"full_name": "octocat/hello-world"},
            ref="refs/heads/main",
            sender={"login": "octocat"},
        )
        assert DimensionExtractor().extract_dimensions(event) == {
            "repository": "octocat/hello-world",
            "organization": "octocat",
            "source": "github",
            "branch": "main",
            "author": "octocat",
        }

    def test_github_partial_payload_degrades_to_unknown(self) -> None:
        dims = DimensionExtractor().extract_dimensions(_event())
        assert dims["repository"] == UNKNOWN
        assert dims["organization"] == UNKNOWN
        assert dims["branch"] == UNKNOWN
        assert dims["author"] == UNKNOWN

    def test_jira_project_key(self) -> None:
        event = _event("jira.issue_created", "jira", issue={"fields": {"project": {"key": "OPS"}}})
        assert DimensionExtractor().extract_dimensions(event) == {"project": "OPS", "source": "jira"}

    def test_ci_and_task_dimensions(self) -> None:
        extractor = DimensionExtractor()
        assert extractor.extract_dimensions(_event("ci.build", "ci", project="api")) == {
            "project": "api",
            "provider": UNKNOWN,
            "source": "ci",
        }
        assert extractor.extract_dimensions(_event("task.created", "task", type="bug"))["task_type"] == "bug"

    def test_unknown_source_uses_generic(self) -> None:
        event = _event("custom_source.ping", "custom_source", anything={"deep": [1, 2]})
        assert DimensionExtractor().extract_dimensions(event) == {"source": "custom_source"}

    def test_source_resolved_from_name_prefix(self) -> None:
        event = _event("gitlab.push", "webhook", project={"path_with_namespace": "grp/proj"})
        assert DimensionExtractor().extract_dimensions(event)["project"] == "grp/proj"

    def test_file_dimensions_merge_base(self) -> None:
        event = _event(repository={"full_name": "o/r"}, commits=[{"added": ["src/a.py"]}])
        [(change, dims)] = list(DimensionExtractor().iter_file_dimensions(event))
        assert change.path == "src/a.py"
        assert dims["repository"] == "o/r"
        assert dims["directory"] == "src"
        assert dims["filetype"] == "py"

    @given(
        data=st.recursive(_leaf, _containers, max_leaves=20),
        source=st.sampled_from(["github", "gitlab", "jira", "bitbucket", "ci", "task", "other"]),
    )
    def test_total_over_arbitrary_payloads(self, data: object, source: str) -> None:
        payload = data if isinstance(data, dict) else {"value": data}
        event = Event(name=f"{source}.push", source=source, data=payload)
        dims = DimensionExtractor().extract_dimensions(event)
        assert all(isinstance(v, str) and v for v in dims.values())
        extract_file_changes(event)
        extract_code_volume(event)
        result = MetricClassifier().classify(event)
        assert all(math.isfinite(m.value) for m in result.metrics)

    @given(
        name=st.sampled_from(_CLASSIFIED_NAMES),
        fields=st.dictionaries(
            st.sampled_from(_NUMERIC_AND_STATUS_KEYS), st.recursive(_leaf, _containers, max_leaves=8)
        ),
        stats=st.dictionaries(st.sampled_from(["additions", "deletions"]), _leaf),
    )
    def test_classification_total_over_hostile_values(
        self, name: str, fields: dict[str, object], stats: dict[str, object]
    ) -> None:
        data = dict(fields)
        data.setdefault("commits", [{"id": "c1", "stats": stats, "added": ["src/a.py"]}])
        event = Event(name=name, source=name.split(".", 1)[0], data=data)
        result = MetricClassifier().classify(event)
        assert result.metrics
        for metric in result.metrics:
            assert math.isfinite(metric.value)
            assert all(isinstance(v, str) and v for v in metric.dimensions.values())
