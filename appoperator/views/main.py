# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST

from appoperator.diagnostics import Diagnostics
from appoperator.operator import Operator

router = APIRouter()


def get_operator(request: Request) -> Operator:
    return request.app.state.operator


@router.get("/")
async def index_view(operator: Operator = Depends(get_operator)) -> Diagnostics:
    return await operator.diagnostics()


@router.get("/health")
async def health_view() -> str:
    return "healthy"


@router.get("/metrics")
async def metrics_view(operator: Operator = Depends(get_operator)) -> Response:
    return Response(content=operator.metrics(), media_type=CONTENT_TYPE_LATEST)
