"""
Catalog API views.

REST API endpoints for running the pipeline and watching its runs.

Trigger endpoints answer 202 when work was queued and 200 with
``success: false`` when there was nothing to do. Unknown profiles or runs
answer 404; malformed parameters answer 400.
"""

import logging

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter
from drf_spectacular.types import OpenApiTypes

from catalog.api.throttling import PipelineTriggerThrottle
from catalog.models import Profile
from catalog.services.pipeline import RunKind, TriggerResult, get_orchestrator
from catalog.services.taxonomy import build_category_tree

logger = logging.getLogger(__name__)

VALID_RUN_KINDS = {kind.value for kind in RunKind}

PROFILE_ID_PARAMETER = OpenApiParameter(
    name='profile_id',
    type=int,
    location=OpenApiParameter.PATH,
    description='Profile primary key',
)
RUN_PARAMETERS = [
    OpenApiParameter(
        name='kind',
        type=str,
        location=OpenApiParameter.PATH,
        enum=sorted(VALID_RUN_KINDS),
        description='Run type',
    ),
    OpenApiParameter(
        name='run_id',
        type=int,
        location=OpenApiParameter.PATH,
        description='Run primary key',
    ),
]

TRIGGER_RESPONSES = {
    202: {'description': 'Work queued'},
    200: {'description': 'Nothing to do (success is false)'},
    404: {'description': 'Profile not found'},
}


def _profile_not_found(profile_id):
    return Response(
        {'error': f'Profile {profile_id} not found'},
        status=status.HTTP_404_NOT_FOUND
    )


def _trigger_response(result: TriggerResult) -> Response:
    http_status = status.HTTP_202_ACCEPTED if result.success else status.HTTP_200_OK
    return Response(result.to_dict(), status=http_status)


def _run_kind_error(kind):
    if kind in VALID_RUN_KINDS:
        return None
    return Response(
        {'error': f'Invalid run type. Valid types: {", ".join(sorted(VALID_RUN_KINDS))}'},
        status=status.HTTP_400_BAD_REQUEST
    )


def _run_trigger(profile_id, operation: str) -> Response:
    try:
        profile = Profile.objects.get(pk=profile_id)
    except Profile.DoesNotExist:
        return _profile_not_found(profile_id)

    result = getattr(get_orchestrator(), operation)(profile)
    logger.info("API %s for @%s: %s", operation, profile.username, result.message)
    return _trigger_response(result)


# ============================================================
# Profile triggers
# ============================================================

@extend_schema(
    tags=['Pipeline'],
    summary='Trigger a scrape',
    description='Fetch one page of posts for the profile. Fails softly if a scrape is already running.',
    parameters=[PROFILE_ID_PARAMETER],
    request=None,
    responses=TRIGGER_RESPONSES,
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([PipelineTriggerThrottle])
def trigger_scrape(request, profile_id):
    return _run_trigger(profile_id, 'trigger_scrape')


@extend_schema(
    tags=['Pipeline'],
    summary='Trigger labeling',
    description='Classify every unlabeled post of the profile into a domain group.',
    parameters=[PROFILE_ID_PARAMETER],
    request=None,
    responses=TRIGGER_RESPONSES,
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([PipelineTriggerThrottle])
def trigger_labeling(request, profile_id):
    return _run_trigger(profile_id, 'trigger_labeling')


@extend_schema(
    tags=['Pipeline'],
    summary='Trigger processing',
    description='''
    Start a processing run over the profile's unprocessed posts.

    One task per post is queued; the run completes when every post has
    been counted as processed, skipped or failed.
    ''',
    parameters=[PROFILE_ID_PARAMETER],
    request=None,
    responses={
        202: {
            'description': 'Processing run started',
            'content': {
                'application/json': {
                    'example': {
                        'success': True,
                        'message': 'Processing started',
                        'run_id': 42,
                        'posts_queued': 12,
                    }
                }
            }
        },
        200: {'description': 'No unprocessed posts (success is false)'},
        404: {'description': 'Profile not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([PipelineTriggerThrottle])
def trigger_processing(request, profile_id):
    return _run_trigger(profile_id, 'trigger_processing')


@extend_schema(
    tags=['Pipeline'],
    summary='Trigger the full pipeline',
    description='Run scrape, label and process for the profile in one background job.',
    parameters=[PROFILE_ID_PARAMETER],
    request=None,
    responses=TRIGGER_RESPONSES,
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([PipelineTriggerThrottle])
def trigger_full_pipeline(request, profile_id):
    return _run_trigger(profile_id, 'trigger_full_pipeline')


@extend_schema(
    tags=['Pipeline'],
    summary='Reprocess skipped posts',
    description='Reset processed posts that produced no products and start a processing run.',
    parameters=[PROFILE_ID_PARAMETER],
    request=None,
    responses=TRIGGER_RESPONSES,
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
@throttle_classes([PipelineTriggerThrottle])
def reprocess_skipped(request, profile_id):
    return _run_trigger(profile_id, 'trigger_reprocess_skipped')


# ============================================================
# Profile status
# ============================================================

@extend_schema(
    tags=['Status'],
    summary='Labeling status',
    parameters=[PROFILE_ID_PARAMETER],
    responses={
        200: {
            'description': 'Label counts',
            'content': {
                'application/json': {
                    'example': {
                        'total_posts': 40,
                        'labeled': 35,
                        'unlabeled': 5,
                        'by_group': {'tech': 30, 'car': 5},
                    }
                }
            }
        },
        404: {'description': 'Profile not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def labeling_status(request, profile_id):
    try:
        profile = Profile.objects.get(pk=profile_id)
    except Profile.DoesNotExist:
        return _profile_not_found(profile_id)
    return Response(get_orchestrator().labeling_status(profile))


@extend_schema(
    tags=['Status'],
    summary='Skipped posts status',
    description='Processed posts of the profile that produced no products.',
    parameters=[PROFILE_ID_PARAMETER],
    responses={200: OpenApiTypes.OBJECT, 404: {'description': 'Profile not found'}},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def skipped_posts(request, profile_id):
    try:
        profile = Profile.objects.get(pk=profile_id)
    except Profile.DoesNotExist:
        return _profile_not_found(profile_id)
    return Response(get_orchestrator().skipped_posts_status(profile))


# ============================================================
# Runs
# ============================================================

@extend_schema(
    tags=['Runs'],
    summary='Get run status',
    parameters=RUN_PARAMETERS,
    responses={
        200: OpenApiTypes.OBJECT,
        400: {'description': 'Invalid run type'},
        404: {'description': 'Run not found'},
    },
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def run_status(request, kind, run_id):
    error = _run_kind_error(kind)
    if error:
        return error

    orchestrator = get_orchestrator()
    try:
        data = orchestrator.get_run_status(kind, run_id)
    except ObjectDoesNotExist:
        return Response({'error': 'Run not found'}, status=status.HTTP_404_NOT_FOUND)
    return Response(data)


@extend_schema(
    tags=['Runs'],
    summary='Cancel a run',
    description='''
    Mark a running run as failed. Workers stop before their next post;
    posts already in progress finish but are not counted.
    ''',
    parameters=RUN_PARAMETERS,
    request=None,
    responses={
        200: OpenApiTypes.OBJECT,
        400: {'description': 'Invalid run type'},
        404: {'description': 'Run not found'},
    },
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cancel_run(request, kind, run_id):
    error = _run_kind_error(kind)
    if error:
        return error

    try:
        result = get_orchestrator().cancel_run(kind, run_id)
    except ObjectDoesNotExist:
        return Response({'error': 'Run not found'}, status=status.HTTP_404_NOT_FOUND)
    return Response(result.to_dict())


@extend_schema(
    tags=['Runs'],
    summary='Clean up stale runs',
    description='Complete finished processing runs and fail runs past their time limit.',
    request=None,
    responses={200: OpenApiTypes.OBJECT},
)
@api_view(['POST'])
@permission_classes([IsAuthenticated])
def cleanup_runs(request):
    result = get_orchestrator().cleanup_stale_runs()
    return Response({'success': True, **result})


# ============================================================
# Taxonomy
# ============================================================

@extend_schema(
    tags=['Taxonomy'],
    summary='Category tree',
    description='Permanent categories as a forest, optionally limited to one domain group.',
    parameters=[
        OpenApiParameter(
            name='group',
            type=str,
            location=OpenApiParameter.QUERY,
            required=False,
            description='Domain group (e.g. tech, car)',
        ),
    ],
    responses={200: OpenApiTypes.OBJECT, 400: {'description': 'Unknown group'}},
)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def category_tree(request):
    group = request.query_params.get('group')
    roots = getattr(settings, 'CATEGORY_GROUP_ROOTS', {})
    if group and group not in roots:
        return Response(
            {'error': f'Unknown group. Valid groups: {", ".join(sorted(roots))}'},
            status=status.HTTP_400_BAD_REQUEST
        )
    return Response({'group': group, 'categories': build_category_tree(group)})
