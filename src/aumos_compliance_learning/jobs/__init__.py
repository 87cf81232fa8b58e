"""Background jobs: the interval runner for the batch drivers."""

from aumos_compliance_learning.jobs.scheduler import LearningJobRunner

__all__ = ["LearningJobRunner"]
