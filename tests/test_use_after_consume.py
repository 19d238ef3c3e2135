"""Use-after-consume detection.

Valid / invalid snippets come from real jax-js code patterns: consuming
methods, argument passes, safe callees, borrow directives, terminating
branches, short-circuit operands, loops and closures.
"""
import pytest

from consumelint.reporter.fixes import apply_fixes

RULE = "use-after-consume"


VALID = [
    # consumed by method call, no later use
    "const x = np.zeros([3]); x.add(1);",
    # .ref keeps the array alive
    "const x = np.zeros([3]); const y = x.ref.add(1); x.dispose();",
    # non-consuming property before consuming method
    "const x = np.zeros([3]); console.log(x.shape); x.dispose();",
    # not a producer: binding is not tracked
    "const x = getValue(); x.add(1); x.shape;",
    # reassignment starts a new lifecycle
    "let x = np.zeros([3]); x.dispose(); x = np.ones([3]); x.add(1);",
    # passed to a user function, no later use
    "const x = np.zeros([3]); foo(x);",
    # safe-listed callees borrow
    "const x = np.zeros([3]); console.log(x); x.dispose();",
    "const x = np.zeros([3]); JSON.stringify(x.shape); x.dispose();",
    "const x = np.zeros([3]); expect(x).toBeDefined(); x.dispose();",
    "const x = np.zeros([3]); assert(x); x.dispose();",
    "const x = np.zeros([3]); assert.deepEqual(x, y); x.dispose();",
    "const x = np.zeros([3]); JSON.stringify(x); x.dispose();",
    "const x = np.zeros([3]); Array.isArray(x); x.dispose();",
    "const x = np.zeros([3]); Math.min(x); x.dispose();",
    "const x = np.zeros([3]); Boolean(x); x.dispose();",
    # consume-and-reassign
    "let x = np.zeros([3]); x = myHelper(x); x.dispose();",
    "let x = np.zeros([3]); x = x.add(1); x.dispose();",
    "let x = np.zeros([3]); x = np.reshape(x, [1, 3]); x.dispose();",
    # several .ref uses
    "const x = np.zeros([3]); x.ref.add(1); x.ref.mul(2); x.dispose();",
    "const x = np.zeros([3]); x.shape; x.dtype; x.dispose();",
    "const x = np.zeros([3]); console.log(x.shape); x.add(1);",
    # producer through .ref
    "const x = y.ref; x.add(1);",
    "const x = np.zeros([3]); np.multiply(x, 2);",
    # method read without a call
    "const x = np.zeros([3]); const fn = x.add; x.dispose();",
    # blockUntilReady does not consume
    "const x = np.zeros([3]); x.blockUntilReady(); x.dispose();",
    # closures are opaque
    "const x = np.zeros([3]); expect(() => np.reshape(x, [99])).toThrow(); x.dispose();",
    "const x = np.array([1]); expect(() => x.add(1)).toThrow(); x.dispose();",
    # evaluation order: arguments run before the consuming call
    "const x = np.zeros([3]); x.reshape([1, ...x.shape]);",
    "const x = np.zeros([3]); const y = x.reshape([x.shape[0], 1]);",
    "const x = np.zeros([3]); foo(x, x.shape);",
    # loops
    "let x = np.zeros([3]); while (cond) { x = x.add(1); } x.dispose();",
    "let x = np.zeros([3]); while (c) { x.add(1); } x.dispose();",
    # short-circuit and ternary operands may not run
    "const x = np.zeros([3]); const y = cond ? x.add(1) : other; x.dispose();",
    "const x = np.zeros([3]); const y = fallback || x.add(1); x.dispose();",
    "const x = np.zeros([3]); const y = cond && x.reshape([1, 3]); x.dispose();",
    "const x = np.zeros([3]); const y = prev ?? x.add(1); x.dispose();",
]


@pytest.mark.parametrize("code", VALID)
def test_valid_snippets(diagnose, code):
    problems = diagnose(code, RULE)
    assert problems == [], f"Unexpected use-after-consume in: {code}\n{[p.message for p in problems]}"


class TestTerminatingBranches:
    """Consumption inside a branch that leaves the function."""

    def test_if_return_then_fallthrough(self, diagnose):
        code = """
            function f() {
              const x = np.zeros([3]);
              if (cond) {
                return x.reshape([1, 3]);
              }
              return x.reshape([3, 1]);
            }
        """
        assert diagnose(code, RULE) == []

    def test_throw_in_consequence(self, diagnose):
        code = """
            function f() {
              const x = np.zeros([3]);
              if (cond) {
                throw x.dispose();
              }
              x.add(1);
            }
        """
        assert diagnose(code, RULE) == []

    def test_else_branch_returns(self, diagnose):
        code = """
            function f() {
              const x = np.zeros([3]);
              if (cond) {
                // do nothing
              } else {
                return x.reshape([1, 3]);
              }
              x.add(1);
            }
        """
        assert diagnose(code, RULE) == []

    def test_else_branch_throws(self, diagnose):
        code = """
            function f() {
              const x = np.zeros([3]);
              if (err) {
                // skip
              } else {
                throw x.dispose();
              }
              x.reshape([3, 1]);
            }
        """
        assert diagnose(code, RULE) == []

    def test_unbraced_return(self, diagnose):
        code = """
            function f() {
              const x = np.zeros([3]);
              if (cond) return x.reshape([1, 3]);
              return x.reshape([3, 1]);
            }
        """
        assert diagnose(code, RULE) == []

    def test_use_inside_terminating_branch_still_flagged(self, diagnose):
        code = """
            function f() {
              const x = np.zeros([3]);
              if (cond) {
                x.add(1);
                console.log(x.shape);
                return;
              }
              x.dispose();
            }
        """
        problems = diagnose(code, RULE)
        assert len(problems) == 1, "Read after consume inside the same branch must be reported"
        assert problems[0].line == 6

    def test_non_terminating_branch_still_dominates(self, diagnose):
        code = """
            const x = np.zeros([3]);
            if (cond) {
              x.add(1);
            }
            x.shape;
        """
        problems = diagnose(code, RULE)
        assert len(problems) == 1


class TestInvalid:
    """Reads after consumption with the suggested `.ref` fix."""

    @pytest.mark.parametrize("code, fixed", [
        ("const x = np.zeros([3]); x.add(1); x.shape;",
         "const x = np.zeros([3]); x.ref.add(1); x.shape;"),
        ("const x = np.zeros([3]); x.dispose(); x.shape;",
         "const x = np.zeros([3]); x.ref.dispose(); x.shape;"),
        ("const x = np.array([1]); x.dispose(); x.dispose();",
         "const x = np.array([1]); x.ref.dispose(); x.dispose();"),
        ("const x = np.zeros([3]); x.js(); x.shape;",
         "const x = np.zeros([3]); x.ref.js(); x.shape;"),
        ("const x = np.zeros([3]); x.add(1); x.mul(2);",
         "const x = np.zeros([3]); x.ref.add(1); x.mul(2);"),
        ("const x = np.zeros([3]); np.multiply(x, 2); x.shape;",
         "const x = np.zeros([3]); np.multiply(x.ref, 2); x.shape;"),
        ("const x = np.array([[1,0],[0,1]]); lax.linalg.cholesky(x); x.shape;",
         "const x = np.array([[1,0],[0,1]]); lax.linalg.cholesky(x.ref); x.shape;"),
        ("const x = np.zeros([3]); foo(x); x.shape;",
         "const x = np.zeros([3]); foo(x.ref); x.shape;"),
        ("const x = np.zeros([3]); obj.process(x); x.shape;",
         "const x = np.zeros([3]); obj.process(x.ref); x.shape;"),
        ("const x = np.zeros([3]); foo(x); bar(x);",
         "const x = np.zeros([3]); foo(x.ref); bar(x);"),
        ("const x = np.zeros([3]); x.dispose(); foo(x);",
         "const x = np.zeros([3]); x.ref.dispose(); foo(x);"),
        ("const x = np.zeros([3]); while (cond) { x.add(1); x.shape; }",
         "const x = np.zeros([3]); while (cond) { x.ref.add(1); x.shape; }"),
        ("let x = np.zeros([3]);\nwhile (cond) { x.add(1); x.shape; x = np.zeros([3]); }",
         "let x = np.zeros([3]);\nwhile (cond) { x.ref.add(1); x.shape; x = np.zeros([3]); }"),
    ])
    def test_single_violation_with_suggestion(self, linter, code, fixed):
        result = linter.lint_source(code)
        problems = [d for d in result.diagnostics if d.rule == RULE]
        assert len(problems) == 1, f"Expected exactly one violation in: {code}"
        suggestion = problems[0].suggestions
        assert len(suggestion) == 1
        assert problems[0].fix is None, "Inserting .ref changes behaviour: suggestion only"
        output, applied = apply_fixes(result.source, problems, include_suggestions=True)
        assert applied == 1
        assert output.decode() == fixed

    def test_message_names_site_and_line(self, diagnose):
        problems = diagnose("const x = np.zeros([3]);\nx.add(1);\nx.shape;", RULE)
        assert len(problems) == 1
        message = problems[0].message
        assert "`x` is used after being consumed by `.add()` (line 2)" in message
        assert problems[0].line == 3
        assert problems[0].blamed_line == 2

    def test_every_later_read_is_reported(self, diagnose):
        problems = diagnose("const x = np.zeros([3]); x.add(1); x.shape; x.dtype;", RULE)
        assert len(problems) == 2

    def test_safe_callee_does_not_reset(self, diagnose):
        problems = diagnose("const x = np.zeros([3]); x.add(1); console.log(x); x.shape;", RULE)
        assert len(problems) == 2, "console.log(x) and x.shape both read a consumed array"

    def test_argument_pass_description(self, diagnose):
        problems = diagnose("const x = np.zeros([3]); lax.linalg.cholesky(x); x.shape;", RULE)
        assert "`lax.linalg.cholesky()`" in problems[0].message


class TestBranches:
    """Ternary / if branches that both consume."""

    def test_both_ternary_branches_consume(self, linter):
        code = "const x = np.zeros([3]); cond ? x.add(1) : x.sub(1); x.shape;"
        result = linter.lint_source(code)
        problems = [d for d in result.diagnostics if d.rule == RULE]
        assert len(problems) == 1
        assert "`.sub()`" in problems[0].message, "The second branch's site is blamed"
        output, _ = apply_fixes(result.source, problems, include_suggestions=True)
        assert output.decode() == "const x = np.zeros([3]); cond ? x.add(1) : x.ref.sub(1); x.shape;"

    def test_both_branches_in_declaration(self, diagnose):
        code = "const x = np.zeros([3]);\nconst y = cond ? x.add(1) : x.mul(2);\nconsole.log(x.shape);"
        problems = diagnose(code, RULE)
        assert len(problems) == 1
        assert problems[0].line == 3

    def test_both_if_branches_consume(self, diagnose):
        code = """
            const x = np.zeros([3]);
            if (cond) {
              x.add(1);
            } else {
              x.mul(2);
            }
            x.shape;
        """
        problems = diagnose(code, RULE)
        assert len(problems) == 1
        assert "`.mul()`" in problems[0].message

    def test_other_branch_plain_read_resets(self, diagnose):
        code = "const x = np.zeros([3]); const y = cond ? x.add(1) : x.shape; x.dispose();"
        assert diagnose(code, RULE) == []

    def test_exhaustive_ternary_inside_short_circuit(self, diagnose):
        code = "const x = np.zeros([3]); ok && (cond ? x.add(1) : x.sub(1)); x.dispose();"
        assert diagnose(code, RULE) == [], "The whole ternary may be skipped"

    @pytest.mark.parametrize("code", [
        "const x = np.zeros([3]); const y = c ? x.add(1) : (d ? x.sub(1) : 0); x.dispose();",
        "const x = np.zeros([3]); const y = c ? x.add(1) : (d && x.sub(1)); x.dispose();",
        "const x = np.zeros([3]); const y = c ? (d || x.add(1)) : x.sub(1); x.dispose();",
    ])
    def test_conditional_site_inside_branch_does_not_promote(self, diagnose, code):
        assert diagnose(code, RULE) == [], "Neither branch consumes when the inner condition fails"

    def test_loop_inside_branch_does_not_promote(self, diagnose):
        code = """
            const x = np.zeros([3]);
            if (c) {
              x.add(1);
            } else {
              while (d) {
                x.sub(1);
              }
            }
            x.dispose();
        """
        assert diagnose(code, RULE) == [], "The loop body may run zero times"


class TestBorrowDirective:

    def test_directive_on_same_line(self, diagnose):
        code = """
            const x = np.zeros([3]);
            myLogger(x); // @jax-borrow
            x.dispose();
        """
        assert diagnose(code, RULE) == []

    def test_directive_on_line_above(self, diagnose):
        code = """
            const x = np.zeros([3]);
            // @jax-borrow
            myLogger(x);
            x.dispose();
        """
        assert diagnose(code, RULE) == []

    def test_block_comment_directive(self, diagnose):
        code = """
            const x = np.zeros([3]);
            myLogger(x); /* @jax-borrow */
            x.dispose();
        """
        assert diagnose(code, RULE) == []

    def test_directive_two_lines_up_is_ignored(self, diagnose):
        code = """
            const x = np.zeros([3]);
            // @jax-borrow

            myLogger(x);
            x.dispose();
        """
        assert len(diagnose(code, RULE)) == 1


class TestScoping:

    def test_super_call_is_not_tracked(self, diagnose):
        code = """
            class Foo extends Bar {
              constructor() {
                const x = np.zeros([3]);
                super();
                x.dispose();
              }
            }
        """
        assert diagnose(code) == []

    def test_closure_reads_after_consume_are_ignored(self, diagnose):
        code = """
            const x = np.zeros([3]);
            x.add(1);
            const f = () => x.shape;
        """
        assert diagnose(code, RULE) == []

    def test_closure_writes_do_not_reset(self, diagnose):
        code = "let x = np.zeros([3]); x.dispose(); const f = () => { x = np.ones([3]); }; x.shape;"
        problems = diagnose(code, RULE)
        assert len(problems) == 1
        assert "`.dispose()`" in problems[0].message

    def test_closure_non_producer_write_keeps_tracking(self, diagnose):
        code = "let x = np.zeros([3]); x.add(1); const reset = () => { x = null; }; x.shape;"
        assert len(diagnose(code, RULE)) == 1

    def test_shadowed_binding_is_separate(self, diagnose):
        code = """
            const x = np.zeros([3]);
            x.add(1);
            {
              const x = np.ones([3]);
              x.dispose();
            }
        """
        assert diagnose(code, RULE) == []

    def test_switch_case_consumption_is_not_modelled(self, diagnose):
        code = """
            const x = np.zeros([3]);
            switch (mode) {
              case 1:
                x.add(1);
                break;
              default:
                break;
            }
            x.dispose();
        """
        assert diagnose(code, RULE) == []

    def test_try_block_consumption_is_not_modelled(self, diagnose):
        code = """
            const x = np.zeros([3]);
            try {
              x.add(1);
            } catch (e) {
              console.log(e);
            }
            x.dispose();
        """
        assert diagnose(code, RULE) == []

    def test_declaration_inside_try_is_tracked(self, diagnose):
        code = """
            try {
              const x = np.zeros([3]);
              x.add(1);
              x.shape;
            } finally {
              cleanup();
            }
        """
        assert len(diagnose(code, RULE)) == 1

    def test_typescript_cast_is_transparent_to_producer(self, diagnose):
        code = "const x = np.zeros([3]) as Array; x.add(1); x.shape;"
        assert len(diagnose(code, RULE, language='typescript')) == 1


class TestFixIdempotence:

    def test_inserting_ref_clears_violations(self, linter):
        result = linter.lint_source("const x = np.zeros([3]); x.add(1); x.mul(2);")
        output, _ = apply_fixes(result.source, result.diagnostics, include_suggestions=True)
        assert linter.lint_source(output).diagnostics == [], output.decode()

    def test_inserting_ref_before_property_read(self, linter):
        result = linter.lint_source("const x = np.zeros([3]); x.add(1); x.shape;")
        problems = [d for d in result.diagnostics if d.rule == RULE]
        output, _ = apply_fixes(result.source, problems, include_suggestions=True)
        again = [d.rule for d in linter.lint_source(output).diagnostics]
        assert again == ["keep-alive-needs-release"], "Only property reads follow the marker, so x still needs a release"
