"""
Job sequencing for mediakiln.

A JobRunner drives one Job through the shared engine:

    idle -> staged -> [pass1 ->] pass2 -> collected -> cleaned -> completed

Any failure moves the job to failed, skips the remaining passes, still cleans
the namespace and re-raises the original error.
"""

import asyncio
from pathlib import Path
from typing import List, Optional

from mediakiln.commands import format_command, split_name
from mediakiln.engine import LOG, PROGRESS, ExecutionEngine
from mediakiln.errors import JobCancelledError, MediakilnError, OutputMissingError
from mediakiln.events import EventLog
from mediakiln.models import Job, JobResult, JobState, PassSpec, new_job_id


def staged_name_for(job_id: str, input_path: Path) -> str:
    """Collision-free namespace name for a job's input copy."""
    _stem, ext = split_name(input_path.name)
    return f"{job_id}_input{ext}"


def new_job(
    input_path: Path,
    display_name: str,
    mime_type: str,
    output_ext: str,
    job_id: Optional[str] = None,
) -> Job:
    """Create an idle Job with collision-free staged and output names (passes filled in later)."""
    job_id = job_id or new_job_id()
    return Job(
        input_path=input_path,
        staged_name=staged_name_for(job_id, input_path),
        passes=[],
        output_name=f"{job_id}_output{output_ext}",
        display_name=display_name,
        mime_type=mime_type,
        id=job_id,
    )


class JobRunner:
    """Run one job at a time against the engine, cleaning up after itself."""

    def __init__(self, engine: ExecutionEngine, events: Optional[EventLog] = None):
        self.engine = engine
        self.events = events or EventLog()
        self.job: Optional[Job] = None
        self._cancelled = False

    @property
    def state(self) -> JobState:
        return self.job.state if self.job else JobState.IDLE

    def cancel(self) -> None:
        """
        Ask the running job to stop before its next pass.

        An engine execution already in progress is not interrupted.
        """
        self._cancelled = True

    async def run(self, job: Job) -> JobResult:
        """
        Execute every pass of job and collect its output.

        Holds the engine's job lock for the whole run, so concurrent callers
        queue behind this job instead of interleaving with it. The namespace
        is cleaned on every exit, including cancellation of the awaiting task.

        Raises:
            EncodeExecutionError: a pass exited nonzero.
            OutputMissingError: the final pass succeeded without writing output.
            JobCancelledError: cancel() was called before a pass started.
        """
        if not job.passes:
            raise ValueError("job has no passes")

        async with self.engine.exclusive():
            self.job = job
            commands: List[str] = []
            try:
                await self.engine.import_file(job.staged_name, job.input_path)
                job.state = JobState.STAGED

                for step in job.passes:
                    if self._cancelled:
                        raise JobCancelledError(f"Job {job.id} cancelled")
                    commands.append(await self._run_pass(job, step))

                try:
                    data = await self.engine.read_file(job.output_name)
                except FileNotFoundError:
                    raise OutputMissingError(job.output_name) from None
                job.state = JobState.COLLECTED
            except (MediakilnError, OSError) as e:
                job.state = JobState.FAILED
                self.events.error(str(e))
                raise
            except asyncio.CancelledError:
                job.state = JobState.FAILED
                self.events.error(f"Job {job.id} cancelled")
                raise
            finally:
                await self._cleanup(job)

            job.state = JobState.CLEANED
            job.state = JobState.COMPLETED
            self.events.progress(100.0)
            return JobResult(name=job.display_name, mime_type=job.mime_type, data=data, commands=commands)

    async def _run_pass(self, job: Job, step: PassSpec) -> str:
        job.state = JobState.PASS1 if step.number == 1 else JobState.PASS2
        if step.label:
            self.events.info(step.label)

        text = format_command(step.argv)
        self.events.command(text)
        with self.engine.listening(LOG, self.events.engine_log):
            with self.engine.listening(PROGRESS, self.events.engine_progress):
                await self.engine.exec(step.argv)

        if step.discard:
            await self._delete_quietly(step.output_name)
        return text

    async def _cleanup(self, job: Job) -> None:
        names = [job.output_name, *job.artifacts, job.staged_name]
        names += [p.output_name for p in job.passes if p.discard]
        for name in dict.fromkeys(names):
            await self._delete_quietly(name)

    async def _delete_quietly(self, name: str) -> None:
        try:
            await self.engine.delete_file(name)
        except (OSError, MediakilnError):
            pass
