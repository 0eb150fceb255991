from fastapi import Request

from cloudadaptor.usecase import ClusterUsecase


def get_usecase(request: Request) -> ClusterUsecase:
    return request.app.state.usecase
