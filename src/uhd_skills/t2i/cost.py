"""Generation cost estimates."""

from collections.abc import Iterable

from uhd_skills.t2i.models import JobDefinition


def estimate_job_cost(job: JobDefinition) -> float:
    """
    Cost of one job in USD.

    Banana at 4K uses the 4K per-image rate; web search adds a per-image surcharge.
    """
    model = job.config
    per_image = model.cost_per_image
    if job.model == "banana" and job.resolution == "4K" and model.cost_per_image_4k:
        per_image = model.cost_per_image_4k
    total = per_image * job.num_images
    if job.enable_web_search and model.web_search_cost:
        total += model.web_search_cost * job.num_images
    return total


def estimate_total_cost(jobs: Iterable[JobDefinition]) -> float:
    return sum(estimate_job_cost(job) for job in jobs)


def format_cost(cost: float) -> str:
    """
    Format a cost as USD.

    Examples:
        >>> format_cost(0.3)
        '$0.30'

    """
    return f"${cost:.2f}"
