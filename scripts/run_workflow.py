import argparse
import logging
from pathlib import Path

from autofill_agent.agent.orchestrator import run_workflow_blocking
from autofill_agent.config import settings
from autofill_agent.workflows import get_builtin_workflow, list_builtin_workflows, load_workflow, workflow_from_step


def main():
    parser = argparse.ArgumentParser(description="Run an autofill workflow against a live page")
    parser.add_argument("--url", required=True, help="Page to open before the first step")
    parser.add_argument(
        "--workflow",
        default="soap_note",
        help=f"Builtin workflow ({', '.join(list_builtin_workflows())}) or path to a workflow JSON file",
    )
    parser.add_argument("--note-file", required=True, help="Text file holding the clinician's note")
    parser.add_argument("--api-key", default=None, help="Oracle API key; falls back to OPENAI_API_KEY")
    parser.add_argument("--from-step", type=int, default=None, help="Resume the workflow at this step")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")

    if Path(args.workflow).is_file():
        workflow = load_workflow(args.workflow)
    else:
        workflow = get_builtin_workflow(args.workflow)
    if args.from_step:
        workflow = workflow_from_step(workflow, args.from_step)

    note = Path(args.note_file).read_text(encoding="utf-8")
    state = run_workflow_blocking(
        args.url, workflow, note, args.api_key, headless=False if args.headed else None
    )

    print(f"Workflow finished: name={workflow.name} status={state.run_status.value}")
    for step, status in zip(workflow.steps, state.step_status):
        print(f"  {step.ordinal}. [{status.value}] {step.title}")
    raise SystemExit(0 if state.run_status.value == "completed" else 1)


if __name__ == "__main__":
    main()
