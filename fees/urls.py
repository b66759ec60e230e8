from django.urls import path
from . import views

app_name = "fees"

urlpatterns = [
    path("", views.index, name="index"),
    path("upcoming/", views.upcoming, name="upcoming"),
    path("students/<str:student_id>/", views.student_detail, name="student"),
]
