"""
Tests for SLURM command building, output parsing and the status synchronizer.
"""

import pytest

from conftest import command_result
from namdrunner.core.exceptions import JobNotFoundError, SlurmError, ValidationError
from namdrunner.models import JobStatus
from namdrunner.slurm.commands import (
    cancel_command,
    parse_sbatch_output,
    parse_status_lines,
    sacct_batch_command,
    squeue_batch_command,
    submit_command,
    validate_slurm_job_id,
)
from namdrunner.slurm.status import KNOWN_SLURM_CODES, SlurmStatusSync, parse_slurm_status


class TestParseSlurmStatus:
    """Test SLURM state code mapping."""

    @pytest.mark.parametrize(
        "code,expected",
        [
            ("PD", JobStatus.PENDING),
            ("PENDING", JobStatus.PENDING),
            ("R", JobStatus.RUNNING),
            ("CG", JobStatus.RUNNING),
            ("COMPLETING", JobStatus.RUNNING),
            ("CD", JobStatus.COMPLETED),
            ("COMPLETED", JobStatus.COMPLETED),
            ("CA", JobStatus.CANCELLED),
            ("F", JobStatus.FAILED),
            ("TIMEOUT", JobStatus.FAILED),
            ("NODE_FAIL", JobStatus.FAILED),
            ("PREEMPTED", JobStatus.FAILED),
            ("OUT_OF_MEMORY", JobStatus.FAILED),
        ],
    )
    def test_known_codes(self, code, expected):
        assert parse_slurm_status(code) == expected

    def test_case_insensitive(self):
        assert parse_slurm_status("running") == JobStatus.RUNNING
        assert parse_slurm_status(" pd ") == JobStatus.PENDING

    def test_mapping_is_total(self):
        for code in KNOWN_SLURM_CODES:
            assert isinstance(parse_slurm_status(code), JobStatus)

    def test_unknown_code_raises(self):
        with pytest.raises(SlurmError, match="WIBBLE"):
            parse_slurm_status("WIBBLE")


class TestCommands:
    """Test command builders and parsers."""

    def test_submit_command(self):
        assert (
            submit_command("/scratch/alpine/u/namdrunner_jobs/j", "scripts/job.sbatch")
            == "cd /scratch/alpine/u/namdrunner_jobs/j && sbatch scripts/job.sbatch"
        )

    def test_submit_command_rejects_relative_dir(self):
        with pytest.raises(ValidationError):
            submit_command("scratch/j", "scripts/job.sbatch")

    def test_batch_queries(self):
        assert squeue_batch_command(["1", "2"]) == "squeue -j 1,2 --format='%i|%T' --noheader"
        assert sacct_batch_command(["3"]) == "sacct -j 3 --format=JobID,State --parsable2 --noheader"

    def test_ids_must_be_numeric(self):
        with pytest.raises(ValidationError):
            cancel_command("12; rm -rf /")
        with pytest.raises(ValidationError):
            squeue_batch_command([])

    def test_parse_sbatch_output(self):
        assert parse_sbatch_output("Submitted batch job 99\n") == "99"
        assert parse_sbatch_output("warning: x\nSubmitted batch job 12345") == "12345"
        assert parse_sbatch_output("sbatch: error: invalid partition") is None
        assert parse_sbatch_output("") is None

    @pytest.mark.parametrize("slurm_id", ["١٢", "1002_3", "12a", "٣"])
    def test_non_ascii_or_array_ids_rejected(self, slurm_id):
        with pytest.raises(ValidationError):
            validate_slurm_job_id(slurm_id)

    def test_sbatch_output_requires_ascii_digits(self):
        assert parse_sbatch_output("Submitted batch job ١٢") is None

    def test_parse_status_lines(self):
        output = "\n".join(
            [
                "100|COMPLETED",
                "100.batch|COMPLETED",
                "100.extern|COMPLETED",
                "",
                "101|CANCELLED by 1000",
                "garbage",
                "102|",
            ]
        )
        assert parse_status_lines(output) == [("100", "COMPLETED"), ("101", "CANCELLED")]


class TestSlurmStatusSync:
    """Test batched status queries, submit and cancel against a mock session."""

    @pytest.mark.asyncio
    async def test_two_pass_query(self, mock_connection):
        """A is queued, B is only in history, C is unknown: two commands total."""

        async def fake_execute(command, timeout=None, retry_config=None):
            if command.startswith("squeue"):
                return command_result("1001|RUNNING\n")
            if command.startswith("sacct"):
                return command_result("1002|COMPLETED\n1002.batch|COMPLETED\n")
            raise AssertionError(command)

        mock_connection.execute_command.side_effect = fake_execute
        sync = SlurmStatusSync(mock_connection)

        results = await sync.query_statuses(["1001", "1002", "1003"])

        assert results["1001"] == JobStatus.RUNNING
        assert results["1002"] == JobStatus.COMPLETED
        assert isinstance(results["1003"], JobNotFoundError)
        assert mock_connection.execute_command.call_count == 2
        sacct_command = mock_connection.execute_command.call_args_list[1].args[0]
        assert "-j 1002,1003 " in sacct_command

    @pytest.mark.asyncio
    async def test_all_active_skips_sacct(self, mock_connection):
        mock_connection.execute_command.return_value = command_result("1|PENDING\n2|RUNNING\n")
        results = await SlurmStatusSync(mock_connection).query_statuses(["1", "2"])

        assert results == {"1": JobStatus.PENDING, "2": JobStatus.RUNNING}
        assert mock_connection.execute_command.call_count == 1

    @pytest.mark.asyncio
    async def test_squeue_invalid_id_falls_through_to_sacct(self, mock_connection):
        mock_connection.execute_command.side_effect = [
            command_result(stderr="slurm_load_jobs error: Invalid job id specified", exit_code=1),
            command_result("7|TIMEOUT\n"),
        ]
        results = await SlurmStatusSync(mock_connection).query_statuses(["7"])
        assert results["7"] == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_state_is_per_job_error(self, mock_connection):
        mock_connection.execute_command.return_value = command_result("5|WIBBLE\n6|RUNNING\n")
        results = await SlurmStatusSync(mock_connection).query_statuses(["5", "6"])

        assert isinstance(results["5"], SlurmError)
        assert results["6"] == JobStatus.RUNNING

    @pytest.mark.asyncio
    async def test_query_failure_raises(self, mock_connection):
        mock_connection.execute_command.return_value = command_result(
            stderr="squeue: error: slurmctld down", exit_code=1
        )
        with pytest.raises(SlurmError):
            await SlurmStatusSync(mock_connection).query_statuses(["1"])

    @pytest.mark.asyncio
    async def test_check_job_status_raises_not_found(self, mock_connection):
        mock_connection.execute_command.return_value = command_result("")
        with pytest.raises(JobNotFoundError):
            await SlurmStatusSync(mock_connection).check_job_status("42")

    @pytest.mark.asyncio
    async def test_submit_is_single_attempt(self, mock_connection):
        mock_connection.execute_command.return_value = command_result("Submitted batch job 99\n")

        slurm_id = await SlurmStatusSync(mock_connection).submit(
            "/scratch/alpine/u/namdrunner_jobs/j", "scripts/job.sbatch"
        )

        assert slurm_id == "99"
        kwargs = mock_connection.execute_command.call_args.kwargs
        assert kwargs["retry_config"].max_attempts == 1
        assert kwargs["timeout"] == mock_connection.timeouts.slurm_operation

    @pytest.mark.asyncio
    async def test_submit_without_job_id(self, mock_connection):
        mock_connection.execute_command.return_value = command_result("something else\n")
        with pytest.raises(SlurmError, match="Submitted batch job"):
            await SlurmStatusSync(mock_connection).submit("/s/namdrunner_jobs/j", "scripts/job.sbatch")

    @pytest.mark.asyncio
    async def test_submit_nonzero_exit(self, mock_connection):
        mock_connection.execute_command.return_value = command_result(
            stderr="sbatch: error: Batch job submission failed", exit_code=1
        )
        with pytest.raises(SlurmError, match="Batch job submission failed"):
            await SlurmStatusSync(mock_connection).submit("/s/namdrunner_jobs/j", "scripts/job.sbatch")

    @pytest.mark.asyncio
    async def test_cancel(self, mock_connection):
        await SlurmStatusSync(mock_connection).cancel("12")
        assert mock_connection.execute_command.call_args.args[0] == "scancel 12"

    @pytest.mark.asyncio
    async def test_cancel_failure_includes_stderr(self, mock_connection):
        mock_connection.execute_command.return_value = command_result(
            stderr="scancel: error: Access/permission denied", exit_code=1
        )
        with pytest.raises(SlurmError, match="Access/permission denied"):
            await SlurmStatusSync(mock_connection).cancel("12")
