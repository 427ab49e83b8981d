import asyncio
import os
import sys

# Add project root to path so we can import app
sys.path.append(os.getcwd())

from app.config.dependencies import get_job_table, get_orchestrator
from app.config.settings import settings
from app.pipelines.minutes import PipelineError, derive_job_id


async def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/run_job.py <object-key> [version-id]")
        print(f"Example: python scripts/run_job.py {settings.s3.input_prefix}2024-01-01.wav")
        return

    source_key = sys.argv[1]
    version_id = sys.argv[2] if len(sys.argv) > 2 else None
    job_id = derive_job_id(settings.s3.bucket_name, source_key, version_id)

    print(f"Running job {job_id} for s3://{settings.s3.bucket_name}/{source_key}...")
    try:
        status = await get_orchestrator().run(job_id, source_key)
    except PipelineError as e:
        print(f"\nPipeline Error: {e}")
        return

    record = await get_job_table().get_job(job_id)
    print("\n--- Job Record ---")
    print(record.model_dump_json(indent=2) if record else f"status={status.value}")
    print("------------------")


if __name__ == "__main__":
    asyncio.run(main())
