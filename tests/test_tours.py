"""
Unit tests for tour endpoints and reports.
"""
import io
from datetime import datetime
from pathlib import Path

from PIL import Image

from tourbooking.config import settings


def get_auth_header(token: str) -> dict:
    """Helper function to create authorization header."""
    return {"Authorization": f"Bearer {token}"}


def tour_payload(**overrides) -> dict:
    payload = {
        "name": "The Mountain Biker",
        "duration": 7,
        "maxGroupSize": 15,
        "difficulty": "medium",
        "price": 1297,
        "summary": "Exciting biking adventure in the Rocky Mountains",
        "imageCover": "tour-2-cover.jpg",
        "startDates": ["2021-06-19T09:00:00", "2021-07-20T09:00:00"],
        "startLocation": {
            "type": "Point",
            "coordinates": [-106.822318, 39.190872],
            "address": "419 S Mill St, Aspen, CO 81611, USA",
            "description": "Aspen, USA",
        },
    }
    payload.update(overrides)
    return payload


def names(response) -> list:
    return [tour["name"] for tour in response.json()["data"]["data"]]


class TestTourListing:
    """Tests for listing tours through the query builder."""

    def test_list_tours(self, client, sample_tours):
        """Test listing returns every public tour in an envelope."""
        response = client.get("/api/v1/tours/")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["results"] == 4

    def test_secret_tours_hidden(self, client, sample_tours):
        """Test secret tours never appear."""
        response = client.get("/api/v1/tours/")
        assert "The Secret Retreat" not in names(response)

        secret = sample_tours[-1]
        assert client.get(f"/api/v1/tours/{secret.id}").status_code == 404

    def test_filter_equality(self, client, sample_tours):
        """Test filtering on a plain field value."""
        response = client.get("/api/v1/tours/?difficulty=medium")
        assert sorted(names(response)) == ["The Park Camper", "The Sea Explorer"]

    def test_filter_range(self, client, sample_tours):
        """Test gte/lte build a range predicate."""
        response = client.get("/api/v1/tours/?price[gte]=900&price[lte]=1200")
        assert sorted(names(response)) == ["The City Wanderer", "The Snow Adventurer"]

    def test_filter_strict_comparison(self, client, sample_tours):
        """Test gt/lt exclude the bound itself."""
        response = client.get("/api/v1/tours/?price[gt]=397&price[lt]=1497")
        assert sorted(names(response)) == ["The City Wanderer", "The Snow Adventurer"]

    def test_filter_unknown_field(self, client, sample_tours):
        """Test filtering on a field the model does not have."""
        response = client.get("/api/v1/tours/?colour=red")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid field: colour."

    def test_filter_uncoercible_value(self, client, sample_tours):
        """Test a value of the wrong type for its field."""
        response = client.get("/api/v1/tours/?price[gte]=cheap")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid price: cheap."

    def test_sort_descending_with_tie_break(self, client, sample_tours):
        """Test -ratingsAverage,price orders by rating then ascending price."""
        response = client.get("/api/v1/tours/?sort=-ratingsAverage,price")
        assert names(response) == [
            "The Park Camper",
            "The Sea Explorer",
            "The City Wanderer",
            "The Snow Adventurer",
        ]

    def test_default_sort_newest_first(self, client, sample_tours):
        """Test without a sort the newest tours come first."""
        response = client.get("/api/v1/tours/")
        assert names(response)[0] == "The Park Camper"
        assert names(response)[-1] == "The Sea Explorer"

    def test_limit_fields(self, client, sample_tours):
        """Test field inclusion keeps the id."""
        response = client.get("/api/v1/tours/?fields=name,price")
        tour = response.json()["data"]["data"][0]
        assert set(tour) == {"id", "name", "price"}

    def test_exclude_fields(self, client, sample_tours):
        """Test field exclusion."""
        response = client.get("/api/v1/tours/?fields=-summary,-description")
        tour = response.json()["data"]["data"][0]
        assert "summary" not in tour
        assert "description" not in tour
        assert "version" in tour

    def test_default_projection_hides_version(self, client, sample_tours):
        """Test the bookkeeping field is hidden by default."""
        tour = client.get("/api/v1/tours/").json()["data"]["data"][0]
        assert "version" not in tour
        assert "name" in tour

    def test_mixed_projection_rejected(self, client, sample_tours):
        """Test mixing inclusion and exclusion."""
        response = client.get("/api/v1/tours/?fields=name,-price")
        assert response.status_code == 400

    def test_pagination(self, client, tour_factory):
        """Test page=2&limit=10 skips exactly ten tours."""
        for index in range(25):
            tour_factory(f"Generated Tour {index:02d}", price=100 + index)

        response = client.get("/api/v1/tours/?sort=price&page=2&limit=10")
        assert response.json()["results"] == 10
        assert names(response)[0] == "Generated Tour 10"
        assert names(response)[-1] == "Generated Tour 19"

        last = client.get("/api/v1/tours/?sort=price&page=3&limit=10")
        assert last.json()["results"] == 5

    def test_pagination_page_zero_is_first_page(self, client, sample_tours):
        """Test page=0 falls back to the first page."""
        first = client.get("/api/v1/tours/?sort=price&limit=2&page=1")
        zero = client.get("/api/v1/tours/?sort=price&limit=2&page=0")
        assert names(zero) == names(first)

    def test_oversized_pagination_falls_back(self, client, sample_tours):
        """Test page and limit beyond a 64-bit integer use the defaults."""
        response = client.get("/api/v1/tours/?limit=99999999999999999999")
        assert response.status_code == 200
        assert response.json()["results"] == 4

        response = client.get("/api/v1/tours/?page=99999999999999999999")
        assert response.status_code == 200
        assert response.json()["results"] == 4

    def test_huge_page_is_empty(self, client, sample_tours):
        """Test a page far past the end returns nothing."""
        response = client.get("/api/v1/tours/?page=9223372036854775807&limit=10")
        assert response.status_code == 200
        assert response.json()["results"] == 0

    def test_filter_oversized_integer(self, client, sample_tours):
        """Test integer filters beyond a 64-bit integer are rejected."""
        response = client.get("/api/v1/tours/?duration=99999999999999999999")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid duration: 99999999999999999999."

    def test_top_five_cheap(self, client, sample_tours):
        """Test the alias applies its fixed query."""
        response = client.get("/api/v1/tours/top-5-cheap")
        assert response.status_code == 200
        tours = response.json()["data"]["data"]
        assert tours[0]["name"] == "The Park Camper"
        assert set(tours[0]) == {"id", "name", "price", "ratingsAverage", "summary", "difficulty"}


class TestTourDetail:
    """Tests for reading a single tour."""

    def test_get_tour(self, client, sample_tour):
        """Test reading a tour with derived fields."""
        response = client.get(f"/api/v1/tours/{sample_tour.id}")
        assert response.status_code == 200
        tour = response.json()["data"]["data"]
        assert tour["slug"] == "the-forest-hiker"
        assert tour["durationWeeks"] == 5 / 7
        assert tour["startDates"] == ["2021-04-25T09:00:00", "2021-07-20T09:00:00"]
        assert tour["startLocation"]["coordinates"] == [-115.570154, 51.178456]
        assert tour["reviews"] == []

    def test_get_tour_includes_reviews(self, client, sample_tour, sample_review):
        """Test the detail view expands reviews with their authors."""
        response = client.get(f"/api/v1/tours/{sample_tour.id}")
        reviews = response.json()["data"]["data"]["reviews"]
        assert len(reviews) == 1
        assert reviews[0]["user"]["name"] == "Regular User"

    def test_get_nonexistent_tour(self, client):
        """Test reading a tour that does not exist."""
        response = client.get("/api/v1/tours/9999")
        assert response.status_code == 404
        assert response.json() == {"status": "fail", "message": "No tour found with that ID"}

    def test_get_tour_invalid_id(self, client):
        """Test a malformed id."""
        response = client.get("/api/v1/tours/not-a-number")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid tour_id: not-a-number."


class TestTourManagement:
    """Tests for creating, updating and deleting tours."""

    def test_admin_create_tour(self, client, admin_user, admin_token):
        """Test admin can create a tour."""
        response = client.post("/api/v1/tours/", headers=get_auth_header(admin_token), json=tour_payload())
        assert response.status_code == 201
        tour = response.json()["data"]["data"]
        assert tour["name"] == "The Mountain Biker"
        assert tour["slug"] == "the-mountain-biker"
        assert tour["ratingsAverage"] == 4.5
        assert tour["ratingsQuantity"] == 0
        assert tour["startDates"] == ["2021-06-19T09:00:00", "2021-07-20T09:00:00"]

    def test_lead_guide_create_tour_with_guides(self, client, lead_guide, guide, lead_guide_token):
        """Test guides are resolved from user ids."""
        response = client.post(
            "/api/v1/tours/",
            headers=get_auth_header(lead_guide_token),
            json=tour_payload(guides=[lead_guide.id, guide.id]),
        )
        assert response.status_code == 201
        guides = response.json()["data"]["data"]["guides"]
        assert {g["email"] for g in guides} == {"lead@example.com", "guide@example.com"}

    def test_create_tour_unknown_guide(self, client, admin_user, admin_token):
        """Test referencing a guide that does not exist."""
        response = client.post(
            "/api/v1/tours/",
            headers=get_auth_header(admin_token),
            json=tour_payload(guides=[9999]),
        )
        assert response.status_code == 400

    def test_guide_cannot_create_tour(self, client, guide, guide_token):
        """Test guides cannot create tours."""
        response = client.post("/api/v1/tours/", headers=get_auth_header(guide_token), json=tour_payload())
        assert response.status_code == 403

    def test_create_tour_requires_auth(self, client):
        """Test creating a tour without a token."""
        response = client.post("/api/v1/tours/", json=tour_payload())
        assert response.status_code == 401

    def test_create_tour_discount_must_be_below_price(self, client, admin_user, admin_token):
        """Test the discount validation."""
        response = client.post(
            "/api/v1/tours/",
            headers=get_auth_header(admin_token),
            json=tour_payload(priceDiscount=1500),
        )
        assert response.status_code == 400
        assert "Discount price (1500.0) must be below regular price" in response.json()["message"]

    def test_create_tour_name_too_short(self, client, admin_user, admin_token):
        """Test tour names need at least ten characters."""
        response = client.post(
            "/api/v1/tours/",
            headers=get_auth_header(admin_token),
            json=tour_payload(name="Short"),
        )
        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid input data.")

    def test_create_tour_invalid_difficulty(self, client, admin_user, admin_token):
        """Test difficulty is one of easy, medium, difficult."""
        response = client.post(
            "/api/v1/tours/",
            headers=get_auth_header(admin_token),
            json=tour_payload(difficulty="extreme"),
        )
        assert response.status_code == 400

    def test_create_duplicate_tour_name(self, client, admin_user, admin_token, sample_tour):
        """Test tour names are unique."""
        response = client.post(
            "/api/v1/tours/",
            headers=get_auth_header(admin_token),
            json=tour_payload(name="The Forest Hiker"),
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Duplicate field value: name. Please use another value!"

    def test_update_tour_name_updates_slug(self, client, admin_user, admin_token, sample_tour):
        """Test the slug follows the name."""
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}",
            headers=get_auth_header(admin_token),
            json={"name": "The Forest Explorer"},
        )
        assert response.status_code == 200
        tour = response.json()["data"]["data"]
        assert tour["slug"] == "the-forest-explorer"
        assert tour["price"] == 497

    def test_update_discount_checked_against_stored_price(self, client, admin_user, admin_token, sample_tour):
        """Test a partial update cannot set a discount above the current price."""
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}",
            headers=get_auth_header(admin_token),
            json={"priceDiscount": 600},
        )
        assert response.status_code == 400

    def test_update_rejects_null_name(self, client, admin_user, admin_token, sample_tour):
        """Test a required field cannot be cleared."""
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}",
            headers=get_auth_header(admin_token),
            json={"name": None},
        )
        assert response.status_code == 400
        assert response.json()["status"] == "fail"
        assert "name cannot be null" in response.json()["message"]

    def test_update_rejects_null_price(self, client, admin_user, admin_token, sample_tour):
        """Test the price cannot be cleared, even alongside a discount."""
        for body in ({"price": None}, {"price": None, "priceDiscount": 100}):
            response = client.patch(
                f"/api/v1/tours/{sample_tour.id}",
                headers=get_auth_header(admin_token),
                json=body,
            )
            assert response.status_code == 400
            assert "price cannot be null" in response.json()["message"]

    def test_update_clears_discount(self, client, admin_user, admin_token, sample_tour):
        """Test optional fields may be cleared with null."""
        client.patch(
            f"/api/v1/tours/{sample_tour.id}",
            headers=get_auth_header(admin_token),
            json={"priceDiscount": 100},
        )
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}",
            headers=get_auth_header(admin_token),
            json={"priceDiscount": None},
        )
        assert response.status_code == 200
        assert response.json()["data"]["data"]["priceDiscount"] is None

    def test_update_start_dates(self, client, admin_user, admin_token, sample_tour):
        """Test replacing the start dates."""
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}",
            headers=get_auth_header(admin_token),
            json={"startDates": ["2022-01-05T09:00:00"]},
        )
        assert response.status_code == 200
        assert response.json()["data"]["data"]["startDates"] == ["2022-01-05T09:00:00"]

    def test_update_nonexistent_tour(self, client, admin_user, admin_token):
        """Test updating a tour that does not exist."""
        response = client.patch(
            "/api/v1/tours/9999",
            headers=get_auth_header(admin_token),
            json={"price": 100},
        )
        assert response.status_code == 404

    def test_delete_tour(self, client, admin_user, admin_token, sample_tour):
        """Test deleting a tour."""
        response = client.delete(f"/api/v1/tours/{sample_tour.id}", headers=get_auth_header(admin_token))
        assert response.status_code == 204
        assert response.content == b""
        assert client.get(f"/api/v1/tours/{sample_tour.id}").status_code == 404

    def test_regular_user_cannot_delete_tour(self, client, regular_user, regular_token, sample_tour):
        """Test regular users cannot delete tours."""
        response = client.delete(f"/api/v1/tours/{sample_tour.id}", headers=get_auth_header(regular_token))
        assert response.status_code == 403


class TestTourImages:
    """Tests for uploading tour images."""

    def image(self, color=(200, 80, 40)):
        buffer = io.BytesIO()
        Image.new("RGB", (3000, 2000), color=color).save(buffer, "PNG")
        buffer.seek(0)
        return buffer

    def test_upload_cover_and_images(self, client, admin_user, admin_token, sample_tour, tmp_path, monkeypatch):
        """Test the cover and gallery images are resized and stored."""
        monkeypatch.setattr(settings, "img_dir", str(tmp_path))
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}/images",
            headers=get_auth_header(admin_token),
            files=[
                ("imageCover", ("cover.png", self.image(), "image/png")),
                ("images", ("one.png", self.image(), "image/png")),
                ("images", ("two.png", self.image(), "image/png")),
            ],
        )
        assert response.status_code == 200
        tour = response.json()["data"]["data"]
        assert tour["imageCover"].endswith("-cover.jpeg")
        assert len(tour["images"]) == 2

        with Image.open(Path(tmp_path) / "tours" / tour["images"][0]) as stored:
            assert stored.size == (2000, 1333)

    def test_upload_too_many_images(self, client, admin_user, admin_token, sample_tour, tmp_path, monkeypatch):
        """Test at most three gallery images."""
        monkeypatch.setattr(settings, "img_dir", str(tmp_path))
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}/images",
            headers=get_auth_header(admin_token),
            files=[("images", (f"{i}.png", self.image(), "image/png")) for i in range(4)],
        )
        assert response.status_code == 400

    def test_upload_non_image(self, client, admin_user, admin_token, sample_tour, tmp_path, monkeypatch):
        """Test non-image uploads are rejected."""
        monkeypatch.setattr(settings, "img_dir", str(tmp_path))
        response = client.patch(
            f"/api/v1/tours/{sample_tour.id}/images",
            headers=get_auth_header(admin_token),
            files=[("imageCover", ("cover.txt", io.BytesIO(b"not an image"), "text/plain"))],
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Not an image! Please upload only images."


class TestTourReports:
    """Tests for the statistics and geo endpoints."""

    def test_tour_stats(self, client, sample_tours):
        """Test stats group top-rated tours by difficulty and leave out easy ones."""
        response = client.get("/api/v1/tours/tour-stats")
        assert response.status_code == 200
        stats = response.json()["data"]["stats"]
        assert [group["difficulty"] for group in stats] == ["MEDIUM", "DIFFICULT"]

        medium = stats[0]
        assert medium["numTours"] == 2
        assert medium["numRatings"] == 13
        assert medium["avgPrice"] == 947
        assert medium["minPrice"] == 397
        assert medium["maxPrice"] == 1497

    def test_monthly_plan(self, client, tour_factory, guide, guide_token):
        """Test tour starts are counted per month, busiest month first."""
        tour_factory("The Spring Walker", start_dates=[datetime(2021, 3, 5), datetime(2021, 7, 1)])
        tour_factory("The River Paddler", start_dates=[datetime(2021, 3, 20), datetime(2022, 3, 1)])

        response = client.get("/api/v1/tours/monthly-plan/2021", headers=get_auth_header(guide_token))
        assert response.status_code == 200
        plan = response.json()["data"]["plan"]
        assert plan == [
            {"month": 3, "numTourStarts": 2, "tours": ["The Spring Walker", "The River Paddler"]},
            {"month": 7, "numTourStarts": 1, "tours": ["The Spring Walker"]},
        ]

    def test_monthly_plan_requires_staff(self, client, regular_user, regular_token):
        """Test regular users cannot read the plan."""
        response = client.get("/api/v1/tours/monthly-plan/2021", headers=get_auth_header(regular_token))
        assert response.status_code == 403

    def test_monthly_plan_invalid_year(self, client, guide, guide_token):
        """Test a year that is not a number."""
        response = client.get("/api/v1/tours/monthly-plan/soon", headers=get_auth_header(guide_token))
        assert response.status_code == 400

    def test_tours_within(self, client, sample_tours):
        """Test only tours starting inside the radius are returned."""
        response = client.get("/api/v1/tours/tours-within/400/center/34.111745,-118.113491/unit/mi")
        assert response.status_code == 200
        assert names(response) == ["The Park Camper"]

        wider = client.get("/api/v1/tours/tours-within/1000/center/34.111745,-118.113491/unit/mi")
        assert sorted(names(wider)) == ["The Park Camper", "The Snow Adventurer"]

    def test_tours_within_km(self, client, sample_tours):
        """Test the radius can be given in kilometres."""
        response = client.get("/api/v1/tours/tours-within/10/center/25.77,-80.18/unit/km")
        assert names(response) == ["The Sea Explorer"]

    def test_distances(self, client, sample_tours):
        """Test distances are sorted nearest first and converted to the unit."""
        response = client.get("/api/v1/tours/distances/34.111745,-118.113491/unit/mi")
        assert response.status_code == 200
        results = response.json()["data"]["data"]
        assert [r["name"] for r in results][0] == "The Park Camper"
        assert results[0]["distance"] < 1
        distances = [r["distance"] for r in results]
        assert distances == sorted(distances)
        # Los Angeles to Miami is roughly 2340 miles
        miami = next(r for r in results if r["name"] == "The Sea Explorer")
        assert 2200 < miami["distance"] < 2500

    def test_distances_bad_latlng(self, client):
        """Test a malformed center point."""
        response = client.get("/api/v1/tours/distances/34.1/unit/mi")
        assert response.status_code == 400
        assert response.json()["message"] == "Please provide latitude and longitude in the format lat,lng."

    def test_distances_bad_unit(self, client):
        """Test units other than mi and km."""
        response = client.get("/api/v1/tours/distances/34.1,-118.1/unit/ft")
        assert response.status_code == 400
        assert response.json()["message"] == "Unit must be either mi or km."
