from django.contrib import admin
from django.contrib.auth import get_user_model

from .models import Organisation

CustomUser = get_user_model()


@admin.register(CustomUser)
class CustomUserAdmin(admin.ModelAdmin):
    list_display = ("username", "email", "role", "org", "is_active", "last_login")
    list_filter = ("role", "org", "is_active")
    search_fields = ("username", "email", "first_name", "last_name")
    ordering = ("-last_login",)


@admin.register(Organisation)
class OrganisationAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "order_prefix", "created_at")
    search_fields = ("name", "slug")
