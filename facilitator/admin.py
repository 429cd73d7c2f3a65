from django.contrib import admin

from facilitator.models import KeyValueEntry


@admin.register(KeyValueEntry)
class KeyValueEntryAdmin(admin.ModelAdmin):
    list_display = ("key", "expires_at", "updated_at")
    search_fields = ("key",)
    readonly_fields = ("created_at", "updated_at")
