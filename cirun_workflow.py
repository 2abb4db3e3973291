# cirun_workflow.py
# CI for a Rust crate: an MSRV build across feature sets plus lint/doc/format checks.
from __future__ import annotations

from cirun.dsl import cmd, job, matrix, on_pull_request, on_push, pipeline

FEATURE_SETS = ["--no-default-features", "", "--all-features"]


def workflow():
    return pipeline(
        "CI",
        job(
            "test",
            cmd("Checkout", "git checkout --force HEAD"),
            cmd("Install Rust", "rustup toolchain install 1.68 --profile minimal"),
            # feature variants stay sequential fail-fast steps of one job
            *matrix("features", FEATURE_SETS).steps(
                lambda flags: cmd(
                    f"Check ({flags or 'default features'})",
                    "cargo +1.68 check",
                    args=flags,
                )
            ),
            cmd("Test", "cargo +1.68 test", args="--all-features"),
            title="MSRV Test",
        ),
        job(
            "quality",
            cmd("Checkout", "git checkout --force HEAD"),
            cmd("Install Rust", "rustup toolchain install stable --profile default"),
            cmd("Clippy", "cargo +stable clippy", args="--all-features"),
            cmd("Check Rustdoc", "cargo +stable doc", args="--all-features --no-deps"),
            cmd("Check Format", "cargo +stable fmt", args="--check"),
            title="Code Quality",
        ),
        on=[on_pull_request(), on_push("main")],
    )
