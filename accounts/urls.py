from django.urls import path
from . import views

app_name = "accounts"

urlpatterns = [
    path("session/", views.start_session, name="start_session"),
    path("session/end/", views.end_session, name="end_session"),
]
