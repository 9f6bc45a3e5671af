"""
Integration test: tune a front-end project's Docker build.

Walks the whole workflow on disk: a slow single-stage Dockerfile with an
unfiltered context, then the fixed multi-stage build with an ignore file,
then incremental cache planning across source and dependency edits.
"""

import json

import pytest

from layerwise.main import main


pytestmark = pytest.mark.integration


SLOW_DOCKERFILE = """\
FROM node:latest
WORKDIR /app
COPY . .
RUN npm install
RUN npm run build
EXPOSE 3000
CMD ["npm", "start"]
"""

FAST_DOCKERFILE = """\
# syntax=docker/dockerfile:1
ARG NODE_VERSION=20

FROM node:${NODE_VERSION}-alpine AS build
WORKDIR /app
COPY package.json package-lock.json ./
RUN npm ci
COPY . .
RUN npm run build

FROM nginx:1.27-alpine
COPY --from=build /app/dist /usr/share/nginx/html
EXPOSE 80
CMD ["nginx", "-g", "daemon off;"]
"""


@pytest.fixture
def web_app(make_context):
    """A React-style project as it looks on a developer machine"""
    return make_context({
        "Dockerfile": SLOW_DOCKERFILE,
        "package.json": json.dumps({"name": "web", "scripts": {"build": "vite build"}}),
        "package-lock.json": json.dumps({"lockfileVersion": 3}),
        "index.html": "<div id=root></div>\n",
        "src/main.jsx": "import React from 'react';\n",
        "src/App.jsx": "export default function App() { return null; }\n",
        "node_modules/react/index.js": "r" * 50_000,
        "node_modules/vite/bin/vite.js": "v" * 20_000,
        ".git/HEAD": "ref: refs/heads/main\n",
        ".git/objects/ab/cdef": "o" * 5_000,
        "dist/assets/index.js": "d" * 8_000,
        ".env": "VITE_API_TOKEN=secret\n",
        ".env.example": "VITE_API_TOKEN=\n",
    })


def run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestSlowBuild:
    """Findings for the unoptimized project"""

    def test_check_reports_layer_and_context_problems(self, web_app, capsys):
        code, out, _ = run(capsys, "check", str(web_app), "--format", "json")
        data = json.loads(out)
        rule_ids = {f["rule_id"] for f in data["findings"]}

        assert code == 1
        assert {"LW001", "LW005", "LW007", "LW009", "LW101", "LW102", "LW103"} <= rule_ids
        assert "LW008" in rule_ids
        assert data["summary"]["by_severity"]["error"] == 1
        assert data["context"]["excluded_files"] == 0

        lines = [f["line"] for f in data["findings"]]
        numbered = [line for line in lines if line is not None]
        assert numbered == sorted(numbered)
        assert lines.index(None) == len(numbered)

    def test_context_text_report(self, web_app, capsys):
        code, out, _ = run(capsys, "context", str(web_app), "--top", "2")

        assert code == 1
        assert "node_modules: warning LW101 node_modules (dependencies," in out
        assert "Ignore file: none" in out
        assert out.index("node_modules/react/index.js") < out.index("node_modules/vite/bin/vite.js")


class TestFixedBuild:
    """The same project after applying the suggestions"""

    def test_fix_workflow(self, web_app, capsys):
        code, out, _ = run(capsys, "context", str(web_app), "--write-ignore")
        assert code == 1
        assert "Updated" in out

        ignore = (web_app / ".dockerignore").read_text(encoding="utf-8").splitlines()
        assert ignore[0] == "# Added by layerwise"
        assert set(ignore[1:]) == {"node_modules", ".git", "dist", ".env"}

        (web_app / "Dockerfile").write_text(FAST_DOCKERFILE, encoding="utf-8")

        code, out, _ = run(capsys, "check", str(web_app), "--format", "json")
        data = json.loads(out)

        assert code == 0
        assert data["findings"] == []
        assert data["context"]["excluded_files"] == 6
        assert data["context"]["files"] == 8
        assert ".env.example" in [e["path"] for e in data["context"]["largest"]]


class TestIncrementalCache:
    """Layer reuse across edits of the fixed build"""

    @pytest.fixture
    def fixed_app(self, web_app):
        (web_app / "Dockerfile").write_text(FAST_DOCKERFILE, encoding="utf-8")
        (web_app / ".dockerignore").write_text("node_modules\n.git\ndist\n.env\n", encoding="utf-8")
        return web_app

    def layers(self, capsys, *argv):
        code, out, _ = run(capsys, "cache", *argv, "--format", "json")
        assert code == 0
        return [(layer["line"], layer["status"]) for layer in json.loads(out)["cache"]["layers"]]

    def test_source_edit_keeps_install_cached(self, fixed_app, capsys):
        first = self.layers(capsys, str(fixed_app), "--save")
        assert {status for _, status in first} == {"new"}

        (fixed_app / "src" / "App.jsx").write_text("export default () => 'v2';\n", encoding="utf-8")
        after_edit = dict(self.layers(capsys, str(fixed_app)))

        assert after_edit[6] == "hit"
        assert after_edit[7] == "hit"
        assert after_edit[8] == "miss"
        assert after_edit[9] == "miss"
        assert after_edit[11] == "hit"
        assert after_edit[12] == "miss"

    def test_ignored_edit_is_free(self, fixed_app, capsys):
        self.layers(capsys, str(fixed_app), "--save")
        (fixed_app / "node_modules" / "react" / "index.js").write_text("changed", encoding="utf-8")

        statuses = {status for _, status in self.layers(capsys, str(fixed_app))}

        assert statuses == {"hit"}

    def test_changed_lockfile_prediction(self, fixed_app, capsys):
        predicted = dict(self.layers(capsys, str(fixed_app), "--changed", "package-lock.json"))

        assert predicted[6] == "miss"
        assert predicted[7] == "miss"
        assert predicted[5] == "hit"
        assert predicted[12] == "miss"

    def test_build_arg_changes_base(self, fixed_app, capsys):
        self.layers(capsys, str(fixed_app), "--save")

        changed = dict(self.layers(capsys, str(fixed_app), "--build-arg", "NODE_VERSION=22"))

        assert changed[4] == "miss"
        assert changed[11] == "hit"
