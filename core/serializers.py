from rest_framework import serializers
from django.contrib.auth import password_validation
from django.contrib.auth import get_user_model
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from common.utils import delete_stored_file
from core.models import AuditLog

User = get_user_model()


class EmailOrUsernameTokenObtainPairSerializer(TokenObtainPairSerializer):
    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["role"] = getattr(user, "role", None)
        token["is_superuser"] = user.is_superuser
        token["is_staff"] = user.is_staff
        return token

    def validate(self, attrs):
        username = attrs.get("username", "")
        if username and "@" in username:
            try:
                user = User.objects.get(email__iexact=username)
                attrs["username"] = user.get_username()
            except User.DoesNotExist:
                pass
        return super().validate(attrs)


class ProfileSerializer(serializers.ModelSerializer):
    """Company profile of the signed-in user; also carries an optional password change."""

    old_password = serializers.CharField(write_only=True, required=False, allow_blank=True)
    new_password = serializers.CharField(write_only=True, required=False, allow_blank=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "role",
            "gst_number",
            "description",
            "profile_image",
            "old_password",
            "new_password",
        ]
        read_only_fields = ["id", "username", "role"]

    def validate_email(self, value):
        normalized_email = value.strip().lower()
        if normalized_email and User.objects.filter(email__iexact=normalized_email).exclude(pk=self.instance.pk).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return normalized_email

    def validate(self, attrs):
        old_password = attrs.pop("old_password", "")
        new_password = attrs.pop("new_password", "")
        if old_password or new_password:
            if not old_password or not new_password:
                raise serializers.ValidationError(
                    {"new_password": "Both old_password and new_password are required to change the password."}
                )
            if not self.instance.check_password(old_password):
                raise serializers.ValidationError({"old_password": "Current password is incorrect."})
            password_validation.validate_password(new_password, user=self.instance)
            attrs["password_change"] = new_password
        return attrs

    def update(self, instance, validated_data):
        new_password = validated_data.pop("password_change", None)
        previous_image = instance.profile_image.name if instance.profile_image else None

        instance = super().update(instance, validated_data)
        if new_password:
            instance.set_password(new_password)
            instance.save(update_fields=["password"])

        if "profile_image" in validated_data and previous_image and previous_image != instance.profile_image.name:
            delete_stored_file(instance.profile_image.storage, previous_image)
        return instance


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
