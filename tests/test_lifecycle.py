"""Never-released and keep-alive (`.ref`) checks."""
import textwrap

import pytest

from consumelint.reporter.fixes import apply_fixes

NEVER_RELEASED = "never-released"
USELESS = "useless-keep-alive"
NEEDS_RELEASE = "keep-alive-needs-release"


def _fix(linter, code, rule, suggestions=False):
    result = linter.lint_source(textwrap.dedent(code))
    problems = [d for d in result.diagnostics if d.rule == rule]
    output, applied = apply_fixes(result.source, problems, include_suggestions=suggestions)
    return problems, output.decode(), applied


class TestNeverReleased:

    def test_unused_array(self, diagnose):
        problems = diagnose("const x = np.zeros([3]);", NEVER_RELEASED)
        assert len(problems) == 1
        assert problems[0].message.startswith("`x` is created here but never consumed or disposed.")

    def test_only_property_reads(self, diagnose):
        problems = diagnose("const x = np.zeros([3]); x.shape; x.dtype;", NEVER_RELEASED)
        assert len(problems) == 1, "Fires exactly once per binding"

    def test_safe_callee_does_not_release(self, diagnose):
        problems = diagnose("const x = np.zeros([3]); console.log(x);", NEVER_RELEASED)
        assert len(problems) == 1

    @pytest.mark.parametrize("code", [
        "const x = np.zeros([3]); x.dispose();",
        "const x = np.zeros([3]); x.add(1);",
        "const x = np.zeros([3]); foo(x);",
        "const x = np.zeros([3]); const y = x.ref.add(1); x.dispose();",
        "let x = np.zeros([3]); x = np.ones([3]); x.dispose();",
        "function f() { const x = np.zeros([3]); return x; }",
        "function f() { const x = np.zeros([3]); return cond ? x : y; }",
        "function* g() { const x = np.zeros([3]); yield x; }",
        "const x = np.zeros([3]); const pair = [x, 1];",
        "const x = np.zeros([3]); const box = { value: x };",
        "const x = np.zeros([3]); const box = { x };",
        "const x = np.zeros([3]); const all = [...x];",
        "const x = np.zeros([3]); const alias = x;",
        "const x = np.zeros([3]); this.weights = x;",
        "const x = np.zeros([3]); const m = new Model(x);",
        "const x = np.zeros([3]); const f = () => x.shape;",
        "export const x = np.zeros([3]);",
        "const x = np.zeros([3]); export { x };",
        "const x = getValue();",
    ])
    def test_released_or_handed_off(self, diagnose, code):
        assert diagnose(code, NEVER_RELEASED) == [], code

    def test_suggestion_appends_dispose_after_last_use(self, linter):
        code = """
            function f() {
              const x = np.zeros([3]);
              console.log(x.shape);
              other();
            }
        """
        problems, output, applied = _fix(linter, code, NEVER_RELEASED, suggestions=True)
        assert len(problems) == 1
        assert problems[0].fix is None
        assert applied == 1
        assert "  console.log(x.shape);\n  x.dispose();\n  other();" in output

    def test_no_suggestion_when_last_use_returns(self, linter):
        code = """
            function f() {
              const x = np.zeros([3]);
              return x.shape;
            }
        """
        problems, output, applied = _fix(linter, code, NEVER_RELEASED, suggestions=True)
        assert len(problems) == 1, "Still reported"
        assert problems[0].suggestions == [], "A release before the return would precede its read"
        assert applied == 0
        assert output == textwrap.dedent(code)

    def test_release_stays_inside_switch_case(self, linter):
        code = """
            switch (k) {
              case 1:
                const x = np.zeros([3]);
                log(x.shape);
                break;
            }
        """
        _, output, applied = _fix(linter, code, NEVER_RELEASED, suggestions=True)
        assert applied == 1
        assert "    log(x.shape);\n    x.dispose();\n    break;\n}" in output

    def test_release_after_case_declaration(self, linter):
        code = """
            switch (k) {
              default:
                const x = np.zeros([3]);
            }
        """
        _, output, _ = _fix(linter, code, NEVER_RELEASED, suggestions=True)
        assert "    const x = np.zeros([3]);\n    x.dispose();\n}" in output

    def test_last_use_in_nested_block_releases_in_declaring_block(self, linter):
        code = """
            const x = np.zeros([3]);
            if (verbose) {
              console.log(x.shape);
            }
            done();
        """
        _, output, _ = _fix(linter, code, NEVER_RELEASED, suggestions=True)
        assert "}\nx.dispose();\ndone();" in output

    def test_no_uses_releases_after_declaration(self, linter):
        _, output, _ = _fix(linter, "const x = np.zeros([3]);", NEVER_RELEASED, suggestions=True)
        assert output == "const x = np.zeros([3]);\nx.dispose();"

    def test_fix_is_not_automatic(self, linter):
        _, output, applied = _fix(linter, "const x = np.zeros([3]);", NEVER_RELEASED)
        assert applied == 0
        assert output == "const x = np.zeros([3]);"


class TestUselessKeepAlive:
    """`.ref` with nothing consuming the binding afterwards."""

    @pytest.mark.parametrize("code, fixed", [
        ("const x = array([1, 2, 3]);\nconst y = x.ref;",
         "const x = array([1, 2, 3]);\nconst y = x;"),
        ("function f(x) {\n  return x.ref;\n}",
         "function f(x) {\n  return x;\n}"),
        ("const fdot = (x) => {\n  const y = jvp(f, [x.ref], [1]);\n  return y;\n};",
         "const fdot = (x) => {\n  const y = jvp(f, [x], [1]);\n  return y;\n};"),
        ("const x = array([1, 2, 3]);\nconst data = x.ref.dataSync();",
         "const x = array([1, 2, 3]);\nconst data = x.dataSync();"),
        ("const x = array([1, 2, 3]);\nconst val = x.ref.js();",
         "const x = array([1, 2, 3]);\nconst val = x.js();"),
        ("const x = array([1, 2, 3]);\nconst val = x.ref.item();",
         "const x = array([1, 2, 3]);\nconst val = x.item();"),
        ("const x = array([1, 2, 3]);\nconst y = x.ref.add(z);",
         "const x = array([1, 2, 3]);\nconst y = x.add(z);"),
    ])
    def test_autofix_removes_marker(self, linter, code, fixed):
        problems, output, applied = _fix(linter, code, USELESS)
        assert len(problems) == 1, f"Expected one useless marker in: {code}"
        assert problems[0].fix is not None, "Dropping a useless marker is safe to apply"
        assert applied == 1
        assert output == fixed

    def test_message(self, diagnose):
        problems = diagnose("const x = array([1]); const d = x.ref.dataSync();", USELESS)
        assert "Unnecessary `.ref`" in problems[0].message
        assert "`x` is not used after this" in problems[0].message

    def test_member_path_marker(self, diagnose):
        problems = diagnose("const model = init(); const w = model.weights.ref.dataSync();", USELESS)
        assert len(problems) == 1
        assert problems[0].name == "model.weights"

    def test_member_path_used_later(self, diagnose):
        code = "const model = init(); model.weights.ref.add(1); model.weights.mul(2);"
        assert diagnose(code, USELESS) == []


class TestKeepAliveNeedsRelease:

    def test_only_property_reads_follow(self, linter):
        code = """
            const x = array([1, 2, 3]);
            const y = x.ref.add(z);
            console.log(x.shape);
        """
        problems, output, applied = _fix(linter, code, NEEDS_RELEASE, suggestions=True)
        assert len(problems) == 1
        assert problems[0].fix is None, "Adding dispose is a suggestion, never automatic"
        assert "(.shape)" in problems[0].message
        assert applied == 1
        assert output.endswith("console.log(x.shape);\nx.dispose();\n")

    def test_props_listed_once(self, diagnose):
        code = "const x = array([1]); x.ref.add(1); x.shape; x.dtype; x.shape;"
        problems = diagnose(code, NEEDS_RELEASE)
        assert len(problems) == 1
        assert "(.shape, .dtype)" in problems[0].message

    def test_no_suggestion_when_last_read_is_returned(self, diagnose):
        code = "function f() { const x = array([1]); x.ref.add(1); return x.shape; }"
        problems = diagnose(code, NEEDS_RELEASE)
        assert len(problems) == 1
        assert problems[0].suggestions == []


KEEP_ALIVE_VALID = [
    # used again later
    """
    const x = array([1, 2, 3]);
    const data = x.ref.dataSync();
    x.dispose();
    """,
    """
    const x = array([1, 2, 3]);
    const y = x.ref.add(other);
    const z = x.mul(other);
    """,
    # not a tracked path
    "const data = getArray().ref.dataSync();",
    """
    function f() {
      const x = array([1, 2, 3]);
      const y = x.ref.add(other);
      return x;
    }
    """,
    """
    const x = array([1, 2, 3]);
    const y = x.ref.add(z);
    consume(x);
    """,
    """
    const x = array([1, 2, 3]);
    const a = x.ref.add(y);
    const b = x.ref.mul(z);
    const c = x.sub(w);
    """,
    # a later marker justifies this one
    """
    const x = array([1, 2, 3]);
    const a = x.ref.dataSync();
    const b = x.ref.dataSync();
    x.dispose();
    """,
    """
    const x = np.array([[3, 1, 4], [1, 5, 9]]);
    let [v, i] = lax.topK(x.ref, 2);
    [v, i] = lax.topK(x, 1, 0);
    """,
    """
    const params = np.array([1.0, 2.0]);
    const state = transform.init(params.ref);
    const [u, s] = transform.update(updates, state, params);
    """,
    # captured by a closure that may run many times
    """
    const L = np.array([[2, 0], [1, 3]]);
    const f = (b) => lax.linalg.triangularSolve(L.ref, b);
    const db = grad(f)(b);
    """,
    """
    const a = np.array([[1, 2], [3, 4]]);
    const f = (b) => np.linalg.lstsq(a.ref, b);
    const db = grad(f)(b);
    """,
    # borrowed callback parameters and loop variables
    """
    items.forEach(function(x) {
      results.push(x.ref);
    });
    """,
    "const refs = items.map((t) => t.ref);",
    "for (const t of consts) t.ref;",
    "for (const t in consts) t.ref;",
    # consumed earlier in the same expression
    """
    const a = array([1, 2, 3]);
    const isMax = equal(a, min(a.ref));
    """,
    """
    const x = array([1, 2, 3]);
    const result = subtract(x, remainder(x.ref, y.ref));
    """,
]


@pytest.mark.parametrize("code", KEEP_ALIVE_VALID)
def test_justified_markers(diagnose, code):
    problems = diagnose(code, USELESS) + diagnose(code, NEEDS_RELEASE)
    assert problems == [], f"Marker wrongly reported in:{code}"
