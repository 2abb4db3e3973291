# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import List

from .errors import WorkflowLoadError
from .model import Pipeline

DEFAULT_WORKFLOW = "cirun_workflow.py"


def load_pipeline(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file path.

    The file must define either:
      - workflow() -> Pipeline
      - PIPELINE = Pipeline(...)

    The document is validated when the Pipeline is constructed, so any
    PipelineError surfaces here, before a run exists.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowLoadError(str(wf_path), "Workflow file not found")
    if wf_path.suffix != ".py":
        raise WorkflowLoadError(str(wf_path), f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"cirun_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        pipeline = globals_dict["workflow"]()
    elif "PIPELINE" in globals_dict:
        pipeline = globals_dict["PIPELINE"]
    else:
        raise WorkflowLoadError(str(wf_path), "Define workflow() -> Pipeline or PIPELINE = pipeline(...)")

    if not isinstance(pipeline, Pipeline):
        raise WorkflowLoadError(
            str(wf_path),
            f"Workflow must return/define a Pipeline, got {type(pipeline).__name__}",
        )
    return pipeline


def find_workflow_files(directory: str | Path = ".") -> List[Path]:
    """cirun_workflow.py first, then any other *_workflow.py, sorted."""
    current_dir = Path(directory)
    workflow_files = []

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    for path in sorted(current_dir.glob("*_workflow.py")):
        if path != default_workflow:
            workflow_files.append(path)

    return workflow_files
