from fastapi import Depends, HTTPException, Request, status

from testtrack.services.session import Session, VisitorDSL


def get_session(request: Request) -> Session:
    """The TestTrack session opened for this request by TestTrackMiddleware.

    Raises HTTP 500 if the middleware is not installed.
    """
    session = getattr(request.state, "test_track", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="TestTrackMiddleware is not installed",
        )
    return session


async def get_visitor_dsl(session: Session = Depends(get_session)) -> VisitorDSL:
    return await session.visitor_dsl()
