from .session import ParentSession

class ParentSessionMiddleware:
    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.parent_session = None
        user = getattr(request, "user", None)
        if user and user.is_authenticated and getattr(user, "is_parent", False):
            request.parent_session = ParentSession.resume(user)
        return self.get_response(request)
