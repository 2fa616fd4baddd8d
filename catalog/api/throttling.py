"""
Custom throttle classes for API rate limiting.
"""

from rest_framework.throttling import UserRateThrottle


class PipelineTriggerThrottle(UserRateThrottle):
    """
    Throttle for endpoints that start pipeline work.

    Rate: 30 requests per hour per user.
    Applied to: /api/v1/profiles/<id>/{scrape,label,process,pipeline,reprocess-skipped}/
    """

    rate = '30/hour'
    scope = 'pipeline_trigger'
