from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken
from rest_framework_simplejwt.views import TokenObtainPairView

from guides.models import GuideProfile

from .serializers import EmailTokenObtainPairSerializer, RegisterSerializer, UserSerializer


def _token_pair(user) -> dict:
    refresh = RefreshToken.for_user(user)
    return {"access": str(refresh.access_token), "refresh": str(refresh)}


class RegisterView(APIView):
    """Sign up a hiker, or a guide together with an unconnected GuideProfile."""

    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()
        return Response(
            {"user": UserSerializer(user).data, **_token_pair(user)},
            status=status.HTTP_201_CREATED,
        )


class LoginView(TokenObtainPairView):
    serializer_class = EmailTokenObtainPairSerializer


class MeView(APIView):
    """The signed-in user; guides also see whether bookings can be paid to them yet."""

    def get(self, request, *args, **kwargs):
        data = UserSerializer(request.user).data
        if request.user.is_guide:
            profile = GuideProfile.objects.filter(user=request.user).first()
            data["guide"] = (
                {
                    "id": profile.id,
                    "display_name": profile.display_name,
                    "stripe_connected": profile.is_payable,
                    "offers_deposits": profile.offers_deposits,
                }
                if profile
                else None
            )
        return Response(data)
