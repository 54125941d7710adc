"""Unit tests for engine/parser.py"""

import json

import pytest

from engine.fingerprint import generate_issue_fingerprint
from engine.parser import (
    clamp_confidence,
    correct_file_path,
    default_test_file,
    extract_json,
    parse_issues,
    parse_matrix,
    parse_test_cases,
)
from models.schemas import FeatureType, Framework, Priority, Scenario, Severity

KNOWN = ["src/button.css", "src/utils/format.ts", "src/views/List.vue"]


def _issue(**overrides):
    item = {
        "file": "src/utils/format.ts",
        "line": 11,
        "severity": "high",
        "message": "toFixed returns a string",
        "suggestion": "Keep the number",
        "confidence": 0.8,
    }
    item.update(overrides)
    return item


class TestExtractJson:
    def test_bare_array(self):
        assert extract_json('[{"a": 1}]', list) == [{"a": 1}]

    def test_fenced(self):
        raw = 'Here you go:\n```json\n[{"a": 1}]\n```\nThanks'
        assert extract_json(raw, list) == [{"a": 1}]

    def test_surrounded_by_prose(self):
        raw = 'I found these: [{"a": 1}] and nothing else.'
        assert extract_json(raw, list) == [{"a": 1}]

    def test_object(self):
        assert extract_json('result: {"features": []}', dict) == {"features": []}

    def test_wrong_shape(self):
        assert extract_json('{"a": 1}', list) is None

    @pytest.mark.parametrize("raw", ["", "not json", "[broken", "```\nnope\n```"])
    def test_garbage(self, raw):
        assert extract_json(raw, list) is None


class TestClampConfidence:
    @pytest.mark.parametrize("val,expected", [
        (1.5, 1.0),
        (-0.3, 0.0),
        (0.42, 0.42),
        ("0.9", 0.9),
        ("high", 0.7),
        (None, 0.7),
        (True, 0.7),
        (float("nan"), 0.7),
    ])
    def test_values(self, val, expected):
        assert clamp_confidence(val, 0.7) == expected


class TestCorrectFilePath:
    def test_exact(self):
        assert correct_file_path("src/button.css", KNOWN) == "src/button.css"

    def test_prefix_noise(self):
        assert correct_file_path("b/src/button.css", KNOWN) == "src/button.css"
        assert correct_file_path("./src/button.css", KNOWN) == "src/button.css"

    def test_extension_mismatch(self):
        assert correct_file_path("src/button.less", KNOWN) == "src/button.css"

    def test_suffix(self):
        assert correct_file_path("utils/format.ts", KNOWN) == "src/utils/format.ts"

    def test_unknown(self):
        assert correct_file_path("src/other.ts", KNOWN) is None
        assert correct_file_path("", KNOWN) is None


class TestDefaultTestFile:
    def test_names(self):
        assert default_test_file("src/a/foo.ts") == "src/a/foo.test.ts"
        assert default_test_file("src/Button.tsx") == "src/Button.test.tsx"
        assert default_test_file("src/views/List.vue") == "src/views/List.test.ts"


class TestParseIssues:
    def test_valid(self):
        issues = parse_issues(json.dumps([_issue()]), "typescript", KNOWN)
        assert len(issues) == 1
        issue = issues[0]
        assert issue.severity == Severity.high
        assert issue.line == 11
        assert issue.topic == "typescript"
        assert issue.id == generate_issue_fingerprint(
            "src/utils/format.ts", (11, 11), "typescript", "toFixed returns a string"
        )

    def test_defaults(self):
        raw = json.dumps([{"file": "src/button.css", "message": "m"}])
        issue = parse_issues(raw, "css", KNOWN)[0]
        assert issue.severity == Severity.medium
        assert issue.confidence == 0.7
        assert issue.line is None

    def test_confidence_clamped(self):
        raw = json.dumps([_issue(confidence=1.5), _issue(confidence=-0.3, message="other")])
        issues = parse_issues(raw, "typescript", KNOWN)
        assert [i.confidence for i in issues] == [1.0, 0.0]

    def test_drops_items_missing_fields(self):
        raw = json.dumps([
            _issue(file=None),
            _issue(message=""),
            _issue(file="src/not-in-diff.ts"),
            "a string",
            _issue(),
        ])
        assert len(parse_issues(raw, "typescript", KNOWN)) == 1

    def test_unknown_severity_and_bad_line(self):
        raw = json.dumps([_issue(severity="blocker", line="abc")])
        issue = parse_issues(raw, "typescript", KNOWN)[0]
        assert issue.severity == Severity.medium
        assert issue.line is None

    def test_marker_copied_into_line_and_snippet(self):
        raw = json.dumps([
            _issue(line="NEW_LINE_12", code_snippet="NEW_LINE_12: +  return value.toFixed(2);"),
            _issue(line=None, message="other",
                   code_snippet="NEW_LINE_13: +  return x;    <- REVIEWABLE (ADDED)"),
        ])
        first, second = parse_issues(raw, "typescript", KNOWN)
        assert (first.line, first.code_snippet) == (12, "return value.toFixed(2);")
        assert (second.line, second.code_snippet) == (13, "return x;")

    def test_path_corrected(self):
        raw = json.dumps([_issue(file="src/button.less")])
        assert parse_issues(raw, "css", KNOWN)[0].file == "src/button.css"

    def test_malformed_response(self):
        assert parse_issues("I could not review this.", "css", KNOWN) is None

    def test_empty_list_is_valid(self):
        assert parse_issues("[]", "css", KNOWN) == []


class TestParseTestCases:
    def test_valid(self):
        raw = json.dumps([{
            "file": "src/utils/format.ts",
            "test_name": "formats to two decimals",
            "code": "import { format } from './format';\nit('x', () => {});",
            "priority": "high",
        }])
        tests = parse_test_cases(raw, Scenario.happy_path, KNOWN, Framework.jest)
        assert len(tests) == 1
        test = tests[0]
        assert test.test_file == "src/utils/format.test.ts"
        assert test.confidence == 0.6
        assert test.framework == Framework.jest
        assert test.priority == Priority.high

    def test_missing_name_and_code(self):
        raw = json.dumps([
            {"file": "src/utils/format.ts", "code": "it('a', () => {});"},
            {"file": "src/utils/format.ts", "test_name": "no code"},
        ])
        tests = parse_test_cases(raw, Scenario.edge_case, KNOWN)
        assert len(tests) == 1
        assert tests[0].test_name == "edge-case src/utils/format.ts"

    def test_malformed(self):
        assert parse_test_cases("nope", Scenario.edge_case, KNOWN) is None


class TestParseMatrix:
    def test_valid(self):
        raw = json.dumps({
            "features": [
                {"id": "F1", "file": "src/utils/format.ts", "name": "format",
                 "type": "class", "line_range": [10, 14]},
                {"id": "F2", "file": "src/missing.ts", "name": "ghost"},
            ],
            "scenarios": [
                {"id": "S1", "feature_id": "F1", "scenario": "edge-case",
                 "test_cases": ["zero", "negative"]},
                {"id": "S2", "feature_id": "F2", "scenario": "happy-path"},
            ],
        })
        features, scenarios = parse_matrix(raw, KNOWN)
        assert [f.id for f in features] == ["F1"]
        assert features[0].type == FeatureType.class_
        assert features[0].line_range == (10, 14)
        assert [s.id for s in scenarios] == ["S1"]
        assert scenarios[0].scenario == Scenario.edge_case

    def test_bad_line_range(self):
        raw = json.dumps({"features": [
            {"file": "src/utils/format.ts", "name": "format", "line_range": [9, 2]},
        ]})
        features, _ = parse_matrix(raw, KNOWN)
        assert features[0].line_range is None
        assert features[0].id == "F1"

    def test_malformed(self):
        assert parse_matrix("[]", KNOWN) is None
        assert parse_matrix('{"scenarios": []}', KNOWN) is None
