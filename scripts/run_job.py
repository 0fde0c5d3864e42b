"""Script to start an augmentor job for an instance and follow it to the end"""
import sys
import time

import requests

API_BASE_URL = "http://localhost:8000/api"
TERMINAL = ("completed", "cancelled", "failed")


def start_job(instance_id: str):
    """Start a job and return its id"""
    print(f"\nStarting job for instance {instance_id}...")

    response = requests.post(
        f"{API_BASE_URL}/jobs/start",
        json={"instance_id": instance_id, "created_by": "run_job.py"},
    )

    if response.status_code == 200:
        result = response.json()
        print(f"✓ {result['message']}")
        print(f"  Job ID: {result['job_id']}")
        return result["job_id"]
    else:
        print(f"✗ Error: {response.status_code}")
        print(response.text)
        return None


def check_job_status(job_id: str):
    """Check the status of a job"""
    response = requests.get(f"{API_BASE_URL}/jobs/{job_id}")
    if response.status_code == 200:
        return response.json()
    return None


def print_recent_logs(job_id: str, limit: int = 10):
    response = requests.get(f"{API_BASE_URL}/jobs/{job_id}/logs")
    if response.status_code != 200:
        return
    for entry in reversed(response.json()[:limit]):
        print(f"  [{entry['level']}] {entry['message']}")


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/run_job.py <instance_id> [poll_seconds]")
        sys.exit(1)

    instance_id = sys.argv[1]
    poll_seconds = float(sys.argv[2]) if len(sys.argv) > 2 else 5.0

    print("=" * 60)
    print("COLLECTION AUGMENTOR - RUN JOB")
    print("=" * 60)

    job_id = start_job(instance_id)
    if not job_id:
        sys.exit(1)

    print("\n" + "=" * 60)
    print("MONITORING JOB")
    print("=" * 60)

    while True:
        status = check_job_status(job_id)
        if not status:
            print(f"✗ Job {job_id} not found")
            sys.exit(1)

        total = status["total_records"] if status["total_records"] is not None else "?"
        print(
            f"Job {job_id}: {status['status']} - {status['processed_records']}/{total} processed, "
            f"{status['failed_records']} failed (pass 1 cleaned {status['pass1_cleaned']}, "
            f"pass 2 {status['pass2_processed']}/{status['pass2_needed']})"
        )

        if status["status"] in TERMINAL:
            break
        time.sleep(poll_seconds)

    print("\nRecent log entries:")
    print_recent_logs(job_id)

    print("=" * 60)
    if status["status"] == "completed":
        print("✓ JOB COMPLETED")
    else:
        print(f"✗ JOB {status['status'].upper()}: {status.get('details') or 'Unknown error'}")
    print("=" * 60)


if __name__ == "__main__":
    main()
