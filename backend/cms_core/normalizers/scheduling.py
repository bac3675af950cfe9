from cms_core.utils.time import isoformat


def normalize_job(job):
    return {
        "id": job.id,
        "document_id": job.document_id,
        "action": job.action.value,
        "scheduled_at": isoformat(job.scheduled_at),
        "timezone": job.timezone,
        "status": job.status.value,
        "is_embargo": job.is_embargo,
        "retry_count": job.retry_count,
        "processed_at": isoformat(job.processed_at),
        "error_message": job.error_message,
        "notes": job.notes,
        "created_by": job.created_by,
        "cancelled_by": job.cancelled_by,
        "cancelled_at": isoformat(job.cancelled_at),
        "created_at": isoformat(job.created_at),
    }


def normalize_process_result(result):
    return {
        "job_id": result.job_id,
        "success": result.success,
        "status": result.status,
        "error": result.error,
    }


def normalize_embargo(status):
    return {
        "embargoed": status.embargoed,
        "until": isoformat(status.until),
    }
