import asyncio
import logging

import httpx
from datetime import datetime
from joserfc import jwt
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from buildpipe.config import config
from buildpipe.runner.dispatcher import Dispatcher
from buildpipe.runner.utils import load_pipeline
from buildpipe.schemas import EventKind, RepoEvent, Run, RunOutcome

logger = logging.getLogger(__name__)

GH_API_BASE = 'https://api.github.com'
PR_ACTIONS = ('opened', 'synchronize', 'reopened')
CONCLUSIONS = {
    RunOutcome.success: 'success',
    RunOutcome.failed: 'failure',
    RunOutcome.aborted: 'cancelled',
}


def get_token():
    now = int(datetime.now().timestamp()) - 60
    data = {
        'iat': now,
        'exp': now + 60 * 10,
        'iss': config.gh_app_id,
    }
    return jwt.encode({'alg': 'RS256'}, data, config.gh_key)


def gh_app_configured() -> bool:
    return config.gh_app_id is not None and config.gh_key is not None


async def get_installation_client(payload: dict) -> tuple[httpx.AsyncClient, str]:
    installation_id = payload['installation']['id']
    async with httpx.AsyncClient(
        base_url=GH_API_BASE,
        headers={'Authorization': f'Bearer {get_token()}'},
    ) as app_client:
        installation_token_resp = await app_client.post(
            f'/app/installations/{installation_id}/access_tokens'
        )
    installation_token_resp.raise_for_status()
    installation_token = installation_token_resp.json()['token']
    installation_client = httpx.AsyncClient(
        base_url=GH_API_BASE,
        headers={'Authorization': f'Bearer {installation_token}'},
    )
    return installation_client, installation_token


def event_from_payload(
    event_name: str, payload: dict, token: str | None = None
) -> RepoEvent | None:
    repository = payload['repository']
    clone_url = repository['clone_url']
    if token:
        clone_url = clone_url.replace('https://', f'https://x-access-token:{token}@', 1)

    if event_name == 'push':
        ref = payload['ref']
        if payload.get('deleted') or not ref.startswith('refs/heads/'):
            return None
        branch = ref.removeprefix('refs/heads/')
        return RepoEvent(
            kind=EventKind.push,
            source_branch=branch,
            destination_branch=branch,
            commit_ref=payload['after'],
            clone_url=clone_url,
            repo_name=repository['full_name'],
        )
    if event_name == 'pull_request' and payload['action'] in PR_ACTIONS:
        pull_request = payload['pull_request']
        return RepoEvent(
            kind=EventKind.pull_request,
            source_branch=pull_request['head']['ref'],
            destination_branch=pull_request['base']['ref'],
            commit_ref=pull_request['head']['sha'],
            clone_url=clone_url,
            repo_name=repository['full_name'],
        )
    return None


def format_report(run: Run) -> dict:
    if run.outcome == RunOutcome.success:
        return {'title': 'Build and tests passed', 'summary': f'Target {run.target}'}
    if run.outcome == RunOutcome.aborted:
        return {'title': 'Cancelled', 'summary': 'Superseded by a newer commit'}
    stage = run.stages[-1] if run.stages else None
    return {
        'title': f'{run.failed_stage.value} failed' if run.failed_stage else 'Failed',
        'summary': run.error or '',
        'text': f'```\n{stage.output}\n```' if stage and stage.output else '',
    }


async def report_runs(
    runs: list[Run],
    task: asyncio.Task,
    client: httpx.AsyncClient,
    repo_name: str,
):
    try:
        check_run_ids = {}
        for run in runs:
            resp = await client.post(
                f'/repos/{repo_name}/check-runs',
                json={
                    'name': f'build ({run.target})',
                    'head_sha': run.commit_ref,
                    'external_id': run.run_id,
                    'status': 'in_progress',
                },
            )
            resp.raise_for_status()
            check_run_ids[run.run_id] = resp.json()['id']

        await asyncio.gather(task, return_exceptions=True)

        for run in runs:
            resp = await client.patch(
                f'/repos/{repo_name}/check-runs/{check_run_ids[run.run_id]}',
                json={
                    'status': 'completed',
                    'conclusion': CONCLUSIONS.get(run.outcome, 'failure'),
                    'output': format_report(run),
                },
            )
            resp.raise_for_status()
    finally:
        await client.aclose()


async def webhook(request: Request):
    dispatcher: Dispatcher = request.app.state.dispatcher
    payload = await request.json()
    event_name = request.headers.get('x-github-event')
    if event_name not in ('push', 'pull_request'):
        return Response(None, 204)

    client = token = None
    if gh_app_configured() and 'installation' in payload:
        client, token = await get_installation_client(payload)

    event = event_from_payload(event_name, payload, token)
    dispatched = dispatcher.dispatch(event) if event is not None else None
    if dispatched is None:
        if client is not None:
            await client.aclose()
        return Response(None, 204)

    runs, task = dispatched
    if client is None:
        return Response(None, 204)
    return Response(
        None,
        204,
        background=BackgroundTask(report_runs, runs, task, client, event.repo_name),
    )


async def list_runs(request: Request):
    dispatcher: Dispatcher = request.app.state.dispatcher
    return JSONResponse([run.model_dump(mode='json') for run in dispatcher.runs.values()])


async def get_run(request: Request):
    dispatcher: Dispatcher = request.app.state.dispatcher
    run = dispatcher.get_run(request.path_params['run_id'])
    if run is None:
        return JSONResponse({'detail': 'Run not found'}, 404)
    return JSONResponse(run.model_dump(mode='json'))


def create_app(dispatcher: Dispatcher) -> Starlette:
    app = Starlette(
        debug=config.debug,
        routes=[
            Route('/webhook', webhook, methods=['POST']),
            Route('/runs', list_runs, methods=['GET']),
            Route('/runs/{run_id}', get_run, methods=['GET']),
        ],
    )
    app.state.dispatcher = dispatcher
    return app


app = create_app(Dispatcher(load_pipeline(config.pipeline_file)))
