from CMS.schemas.base import APIModel


class PublicStats(APIModel):
    conferences: int
    users: int
    submissions: int
    reviews: int
